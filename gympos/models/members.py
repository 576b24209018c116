from __future__ import annotations

from ..extensions import db
from gympos.time_utils import to_utc_z, to_iso_date


class Profile(db.Model):
    """
    Person known to the gym: a member, a staff account, or both.

    ROLES: owner, co owner, manager, cashier, member. Staff tiers are
    defined in gympos.permissions.

    MEMBERSHIP: start_date/expiration_date/status are only changed through
    member_service.extend_membership, which locks the row; version_id turns
    a lost update into a StaleDataError that the caller retries.
    """
    __tablename__ = "profiles"
    __table_args__ = (
        db.UniqueConstraint("member_code", name="uq_profiles_member_code"),
        db.Index("ix_profiles_role", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-facing code (e.g., "M001")
    member_code = db.Column(db.String(32), nullable=True)

    first_name = db.Column(db.String(128), nullable=True)
    last_name = db.Column(db.String(128), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    role = db.Column(db.String(16), nullable=False, default="member")

    # Membership state
    status = db.Column(db.String(16), nullable=True)  # Active, Expired, Pending
    plan_name = db.Column(db.String(255), nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)

    # SHA-256 of the bearer token; plaintext is never stored
    api_token_hash = db.Column(db.String(64), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def __repr__(self) -> str:
        return f"<Profile id={self.id} code={self.member_code!r} role={self.role!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_code": self.member_code,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "status": self.status,
            "plan_name": self.plan_name,
            "start_date": to_iso_date(self.start_date),
            "expiration_date": to_iso_date(self.expiration_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
