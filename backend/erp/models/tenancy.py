from __future__ import annotations

from ..extensions import db
from erp.time_utils import to_utc_z


class Organization(db.Model):
    """
    Multi-tenant root: every tenant is an Organization.

    WHY: Shared-database multi-tenancy with strict isolation.
    Customers, orders, users and audit entries all carry org_id.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrganizationSetting(db.Model):
    """
    Key-value policy overrides at the organization level.

    Values are JSON documents; keys are listed in settings_service.SETTING_KEYS.
    """
    __tablename__ = "organization_settings"
    __table_args__ = (
        db.UniqueConstraint("org_id", "key", name="uq_org_settings_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    key = db.Column(db.String(128), nullable=False)
    value_json = db.Column(db.JSON, nullable=True)

    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("settings", lazy=True))

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "key": self.key,
            "value": self.value_json,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
