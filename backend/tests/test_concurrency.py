# Overview: Pytest coverage for keyed locks, the transient-conflict retry helper and same-variant serialization.

import threading
import time

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError
from settlement import create_app
from settlement.extensions import db
from settlement.models import StockMovement, StockRecord
from settlement.services import catalog_service, inventory_service
from settlement.services.catalog_service import VariantKey
from settlement.services.concurrency import KeyedLock, run_with_retry


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """App on a file-backed SQLite database so each thread gets its own connection."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'settlement.db'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


class TestKeyedLock:
    def test_same_key_is_serialized(self):
        locks = KeyedLock()
        inside = []
        overlaps = []

        def worker():
            with locks.hold(["variant-1"]):
                if inside:
                    overlaps.append(True)
                inside.append(True)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []

    def test_different_keys_are_independent(self):
        locks = KeyedLock()
        entered = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold(["a"]):
                entered.set()
                release.wait(timeout=5)

        t = threading.Thread(target=holder)
        t.start()
        entered.wait(timeout=5)

        acquired = []

        def other():
            with locks.hold(["b"]):
                acquired.append(True)

        o = threading.Thread(target=other)
        o.start()
        o.join(timeout=5)
        release.set()
        t.join()

        assert acquired == [True]

    def test_reentrant_and_overlapping_sets(self):
        locks = KeyedLock()
        with locks.hold(["x", "y"]):
            with locks.hold(["y"]):
                pass

        done = []

        def forward():
            for _ in range(50):
                with locks.hold(["x", "y"]):
                    pass
            done.append("forward")

        def backward():
            for _ in range(50):
                with locks.hold(["y", "x"]):
                    pass
            done.append("backward")

        threads = [threading.Thread(target=forward), threading.Thread(target=backward)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert sorted(done) == ["backward", "forward"]


class TestRunWithRetry:
    def test_retries_once_then_succeeds(self, app):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE stock_records", {}, Exception("database is locked"))
            return "ok"

        assert run_with_retry(flaky, backoff_base=0) == "ok"
        assert len(calls) == 2

    def test_gives_up_after_attempts(self, app):
        calls = []

        def always_stale():
            calls.append(1)
            raise StaleDataError("version mismatch")

        with pytest.raises(StaleDataError):
            run_with_retry(always_stale, backoff_base=0)
        assert len(calls) == 2

    def test_domain_errors_are_not_retried(self, app):
        calls = []

        def fails():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_with_retry(fails, attempts=5, backoff_base=0)
        assert calls == [1]


class TestSameVariantAdjustments:
    def test_concurrent_adjustments_serialize_on_one_variant(self, file_app):
        with file_app.app_context():
            product = catalog_service.register_product(code="TEE-900", name="Thread Tee", base_price=5000)
            key = VariantKey.of(product.id, "black", "M")
            catalog_service.register_variant(*key)
            inventory_service.receive_stock(key, 40, "initial stock")

        errors = []

        def picker():
            with file_app.app_context():
                try:
                    for _ in range(10):
                        inventory_service.ship_stock(key, 1, "pick")
                except Exception as exc:
                    errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=picker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        with file_app.app_context():
            record = db.session.query(StockRecord).filter_by(product_id=key.product_id).one()
            movements = (
                db.session.query(StockMovement)
                .filter_by(product_id=key.product_id)
                .order_by(StockMovement.id.asc())
                .all()
            )

            assert record.quantity_on_hand == 0
            assert len(movements) == 41
            assert [m.resulting_quantity for m in movements] == list(range(40, -1, -1))
            assert movements[-1].resulting_quantity == record.quantity_on_hand
