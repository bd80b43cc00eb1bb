from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

ROLE_MEMBER = "Member"
ROLE_ADMIN = "Admin"
ROLE_SUPER_ADMIN = "Super Admin"
ROLES = (ROLE_MEMBER, ROLE_ADMIN, ROLE_SUPER_ADMIN)

STATUS_ACTIVE = "Active"


class User(db.Model):
    """
    Back-office and storefront accounts.

    Usernames are unique case-insensitively; the functional index below
    enforces it even when two registrations race past the existence check.
    password_hash is bcrypt and never leaves the storage layer.
    """
    __tablename__ = "users"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(32), nullable=False, default=ROLE_MEMBER)
    status = db.Column(db.String(32), nullable=False, default=STATUS_ACTIVE)
    last_login = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "status": self.status,
            "last_login": to_utc_z(self.last_login),
            "created_at": to_utc_z(self.created_at),
        }


db.Index("uq_users_username_lower", db.func.lower(User.username), unique=True)
