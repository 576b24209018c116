# Overview: Customer lookup and the membership extension primitive.

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app

from ..constants import MEMBERSHIP_STATUS_ACTIVE
from ..extensions import db
from ..models import Profile
from gympos.time_utils import today as business_today
from .concurrency import lock_for_update


class MemberError(Exception):
    """Raised for membership operation errors."""
    pass


def get_member(profile_id: int) -> Profile | None:
    return db.session.get(Profile, profile_id)


def get_member_by_code(member_code: str) -> Profile | None:
    return db.session.query(Profile).filter_by(member_code=member_code).first()


def resolve_customer(customer_ref) -> Profile | None:
    """
    Resolve a cart's customer reference.

    Accepts a profile id or a member code; ids are tried first.
    """
    if customer_ref is None:
        return None
    ref = str(customer_ref).strip()
    if not ref:
        return None
    if ref.isdigit():
        profile = get_member(int(ref))
        if profile is not None:
            return profile
    return get_member_by_code(ref)


def customer_identity(profile: Profile | None) -> tuple[str, str]:
    """(member_ref, member_name) as written on the transaction record."""
    if profile is None:
        return current_app.config["GUEST_MEMBER_REF"], current_app.config["GUEST_MEMBER_NAME"]
    ref = profile.member_code or str(profile.id)
    return ref, profile.display_name or ref


def next_membership_window(
    current_expiration: date | None,
    duration_days: int,
    today: date,
) -> tuple[date, date]:
    """
    New (start, expiration) for one unit of a plan.

    Start is today, or the day after the current expiration when that is
    later; expiration is start + duration.
    """
    start = today
    if current_expiration is not None:
        start = max(today, current_expiration + timedelta(days=1))
    return start, start + timedelta(days=duration_days)


def extend_membership(profile_id: int, plan, today: date | None = None) -> Profile:
    """
    Extend or activate a membership by one unit of `plan`.

    Locks the profile row; the version_id column turns a concurrent write
    into StaleDataError at flush, which run_with_retry handles. Does not
    commit: the caller owns the surrounding transaction.
    """
    today = today or business_today()

    profile = lock_for_update(db.session.query(Profile).filter_by(id=profile_id)).first()
    if not profile:
        raise MemberError(f"Member {profile_id} not found")

    start, expiration = next_membership_window(profile.expiration_date, plan.duration_days, today)

    profile.start_date = start
    profile.expiration_date = expiration
    profile.status = MEMBERSHIP_STATUS_ACTIVE
    profile.plan_name = plan.name

    db.session.flush()
    return profile
