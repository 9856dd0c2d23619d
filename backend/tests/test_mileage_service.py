# Overview: Pytest coverage for the mileage ledger and its cached balances.

import pytest
from settlement.errors import AccountNotFound, InsufficientMileage, InvalidTransition, MileageEntryNotFound
from settlement.models import MileageAccount, MileageEntry
from settlement.services import directory_service, mileage_service
from settlement.validation import ValidationError


class TestCreditDebit:
    def test_balance_follows_entries(self, db_session, clock, owner):
        mileage_service.credit(owner.id, 5000, "order", 1)
        mileage_service.credit(owner.id, 2500, "refund", 2)
        mileage_service.debit(owner.id, 3000, "manual", 3)

        assert mileage_service.balance_of(owner.id) == 4500
        assert mileage_service.ledger_balance(owner.id) == 4500

    def test_debit_beyond_balance_fails_without_entry(self, db_session, clock, owner):
        mileage_service.credit(owner.id, 1000)

        with pytest.raises(InsufficientMileage):
            mileage_service.debit(owner.id, 1001)

        assert mileage_service.balance_of(owner.id) == 1000
        assert db_session.query(MileageEntry).filter_by(user_id=owner.id).count() == 1

    def test_override_allows_negative_balance(self, db_session, clock, owner):
        entry = mileage_service.debit(owner.id, 700, override=True, description="admin correction")
        assert entry.amount == -700
        assert entry.kind == "spend"
        assert mileage_service.balance_of(owner.id) == -700

    def test_debit_to_exactly_zero(self, db_session, clock, owner):
        mileage_service.credit(owner.id, 1000)
        mileage_service.debit(owner.id, 1000)
        assert mileage_service.balance_of(owner.id) == 0

    @pytest.mark.parametrize("amount", [0, -5, "12.5", True])
    def test_amount_must_be_positive_integer(self, db_session, clock, owner, amount):
        with pytest.raises(ValidationError):
            mileage_service.credit(owner.id, amount)

    def test_unknown_source_rejected(self, db_session, clock, owner):
        with pytest.raises(ValidationError):
            mileage_service.credit(owner.id, 100, "lottery")

    def test_unknown_user(self, db_session, clock):
        with pytest.raises(AccountNotFound):
            mileage_service.credit(999999, 100)
        with pytest.raises(AccountNotFound):
            mileage_service.balance_of(999999)

    def test_user_without_entries_has_zero_balance(self, db_session, owner):
        assert mileage_service.balance_of(owner.id) == 0


class TestCache:
    def test_recompute_rebuilds_from_completed_entries(self, db_session, clock, owner):
        mileage_service.credit(owner.id, 4000)
        mileage_service.credit(owner.id, 900, status="pending")

        db_session.query(MileageAccount).update({MileageAccount.balance: 123})
        db_session.commit()
        assert mileage_service.balance_of(owner.id) == 123

        assert mileage_service.recompute_balance(owner.id) == 4000
        assert mileage_service.balance_of(owner.id) == 4000

    def test_total_outstanding(self, db_session, clock, owner, company):
        other = directory_service.register_user(username="hanbit_staff", company_id=company.id)
        mileage_service.credit(owner.id, 1500)
        mileage_service.credit(other.id, 500)
        assert mileage_service.total_outstanding() == 2000


class TestAccounts:
    def test_registration_opens_empty_account(self, db_session, company):
        buyer = directory_service.register_user(username="hanbit_buyer", company_id=company.id)

        accounts = db_session.query(MileageAccount).filter_by(user_id=buyer.id).all()
        assert [a.balance for a in accounts] == [0]

    def test_second_account_insert_reuses_existing_row(self, db_session, clock, owner):
        mileage_service.credit(owner.id, 700, commit=False)

        account = mileage_service.create_account(owner.id)
        db_session.commit()

        assert account.user_id == owner.id
        assert db_session.query(MileageAccount).filter_by(user_id=owner.id).count() == 1
        assert mileage_service.balance_of(owner.id) == 700
        assert mileage_service.ledger_balance(owner.id) == 700


class TestPendingEntries:
    def test_pending_credit_counts_only_after_settle(self, db_session, clock, owner):
        entry = mileage_service.credit(owner.id, 3000, "order", 10, status="pending")
        assert mileage_service.balance_of(owner.id) == 0

        settled = mileage_service.settle_pending_entry(entry.id)
        assert settled.status == "completed"
        assert settled.status_changed_at is not None
        assert mileage_service.balance_of(owner.id) == 3000

        with pytest.raises(InvalidTransition):
            mileage_service.settle_pending_entry(entry.id)

    def test_cancel_pending_never_touches_balance(self, db_session, clock, owner):
        entry = mileage_service.credit(owner.id, 3000, status="pending")
        cancelled = mileage_service.cancel_pending_entry(entry.id)
        assert cancelled.status == "cancelled"
        assert mileage_service.balance_of(owner.id) == 0

        with pytest.raises(InvalidTransition):
            mileage_service.settle_pending_entry(entry.id)

    def test_settling_pending_debit_checks_balance(self, db_session, clock, owner):
        entry = mileage_service.debit(owner.id, 500, status="pending")
        with pytest.raises(InsufficientMileage):
            mileage_service.settle_pending_entry(entry.id)

        mileage_service.credit(owner.id, 800)
        mileage_service.settle_pending_entry(entry.id)
        assert mileage_service.balance_of(owner.id) == 300

    def test_reverse_completed_entry(self, db_session, clock, owner):
        earn = mileage_service.credit(owner.id, 2000, "order", 55)
        mileage_service.debit(owner.id, 1500)

        reversal = mileage_service.reverse_entry(earn.id)
        assert reversal.amount == -2000
        assert reversal.reference_id == 55
        assert mileage_service.balance_of(owner.id) == -1500

        pending = mileage_service.credit(owner.id, 10, status="pending")
        with pytest.raises(InvalidTransition):
            mileage_service.reverse_entry(pending.id)

    def test_unknown_entry(self, db_session, clock):
        with pytest.raises(MileageEntryNotFound):
            mileage_service.settle_pending_entry(424242)


class TestEntries:
    def test_entries_newest_first_with_status_filter(self, db_session, clock, owner):
        first = mileage_service.credit(owner.id, 100)
        second = mileage_service.credit(owner.id, 200, status="pending")
        third = mileage_service.debit(owner.id, 50)

        assert [e.id for e in mileage_service.entries_for(owner.id)] == [third.id, second.id, first.id]
        assert [e.id for e in mileage_service.entries_for(owner.id, status="pending")] == [second.id]
        assert [e.id for e in mileage_service.entries_for(owner.id, limit=1, offset=1)] == [second.id]
