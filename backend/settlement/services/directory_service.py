# Overview: Company/user directory lookups for statements and mileage.

from __future__ import annotations

from ..extensions import db
from ..errors import AccountNotFound
from ..models import Company, User
from ..validation import ValidationError
from .mileage_service import create_account


def get_company(company_id: int) -> Company:
    company = db.session.get(Company, company_id)
    if company is None:
        raise AccountNotFound(f"company {company_id} not found", company_id=company_id)
    return company


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise AccountNotFound(f"user {user_id} not found", user_id=user_id)
    return user


def display_name_of(*, company_id: int | None = None, user_id: int | None = None) -> str:
    """Human-readable label for a company or user (display name, then username)."""
    if user_id is not None:
        user = get_user(user_id)
        return user.display_name or user.username
    if company_id is not None:
        return get_company(company_id).name
    raise ValidationError("company_id or user_id is required")


def mileage_user_for_company(company_id: int) -> int:
    """
    User whose mileage ledger carries the company's refunds and deductions.

    The company owner when set; otherwise the company's only active user.
    """
    company = get_company(company_id)
    if company.owner_user_id is not None:
        return company.owner_user_id

    users = (
        db.session.query(User.id)
        .filter_by(company_id=company.id, is_active=True)
        .order_by(User.id.asc())
        .limit(2)
        .all()
    )
    if len(users) == 1:
        return users[0][0]
    raise AccountNotFound(
        f"company {company.name!r} has no mileage account owner",
        company_id=company.id,
    )


def register_company(*, name: str, business_number: str | None = None, commit: bool = True) -> Company:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    company = Company(name=name, business_number=business_number, is_active=True)
    db.session.add(company)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return company


def register_user(
    *,
    username: str,
    company_id: int | None = None,
    display_name: str | None = None,
    owner: bool = False,
    commit: bool = True,
) -> User:
    """
    Create a user with an empty mileage account.

    owner=True makes them the company's mileage account holder.
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required")
    company = get_company(company_id) if company_id is not None else None
    if owner and company is None:
        raise ValidationError("owner requires company_id")

    user = User(username=username, company_id=company_id, display_name=display_name, is_active=True)
    db.session.add(user)
    db.session.flush()
    create_account(user.id)
    if owner:
        company.owner_user_id = user.id
    if commit:
        db.session.commit()
    return user
