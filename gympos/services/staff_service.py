# Overview: Staff accounts and bearer tokens used to resolve the acting profile for POS requests.

"""
Staff token management

WHY: The checkout core only needs to know WHO is acting and in which role.
Each staff profile holds at most one API token; issuing a new one replaces
the old one.

SECURITY:
- Tokens are 32 random bytes from secrets.token_hex
- Only the SHA-256 hash is stored (Profile.api_token_hash)
- Profiles whose role is not a staff tier never resolve, even with a token
"""

from __future__ import annotations

import hashlib
import secrets

from ..extensions import db
from ..models import Profile
from ..permissions import STAFF_ROLES


class StaffError(Exception):
    """Raised for staff account errors."""
    pass


def generate_token() -> str:
    """64-character hex string; returned to the caller once, never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(profile: Profile) -> str:
    """
    Issue a fresh token for a staff profile and commit.

    Returns the plaintext token.
    """
    if profile.role not in STAFF_ROLES:
        raise StaffError(f"Profile {profile.id} has role {profile.role!r}; only staff receive tokens")

    token = generate_token()
    profile.api_token_hash = hash_token(token)
    db.session.commit()
    return token


def revoke_token(profile: Profile) -> None:
    profile.api_token_hash = None
    db.session.commit()


def create_staff(
    first_name: str,
    last_name: str,
    role: str,
    member_code: str | None = None,
) -> tuple[Profile, str]:
    """
    Create a staff profile with a token.

    Returns (profile, plaintext_token).
    """
    if role not in STAFF_ROLES:
        raise StaffError(f"Invalid staff role: {role!r}")

    if member_code and db.session.query(Profile).filter_by(member_code=member_code).first():
        raise StaffError(f"Member code {member_code!r} already exists")

    profile = Profile(
        first_name=first_name,
        last_name=last_name,
        role=role,
        member_code=member_code,
    )
    db.session.add(profile)
    db.session.flush()

    if not profile.member_code:
        profile.member_code = f"S{profile.id:03d}"

    token = issue_token(profile)
    return profile, token


def resolve_token(token: str | None) -> Profile | None:
    """Staff profile for a plaintext token, or None."""
    if not token:
        return None
    profile = db.session.query(Profile).filter_by(api_token_hash=hash_token(token)).first()
    if profile is None or profile.role not in STAFF_ROLES:
        return None
    return profile
