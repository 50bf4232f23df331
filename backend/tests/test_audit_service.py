# Overview: Pytest coverage for the audit mirror.

"""
Audit Mirror Tests

Verifies:
- create/update/delete each produce exactly one entry with filtered values
- updates that only touch excluded attributes produce no entry
- sensitive attributes are redacted
- the reason of one call never leaks into the next
- entries are immutable through the ORM; pruning is the only removal path
"""

from datetime import timedelta

import pytest

from erp.auditing import REDACTED, changed_attributes, filter_auditable_attributes
from erp.context import ActorContext
from erp.extensions import db
from erp.models import AuditLog, AuditLogImmutableError, Customer, User
from erp.services import audit_service
from erp.time_utils import utcnow

from conftest import actor


def _new_customer(org):
    return Customer(
        org_id=org.id,
        customer_code="CUST-AUD-1",
        name="Audit Farms",
        customer_type="credit",
        credit_limit_cents=1_000_000,
        outstanding_balance_cents=0,
    )


def _entries(entity):
    return (
        db.session.query(AuditLog)
        .filter_by(auditable_type=type(entity).__name__, auditable_id=entity.id)
        .order_by(AuditLog.id)
        .all()
    )


class TestAuditHooks:

    def test_create_records_all_non_excluded_attributes(self, db_session, org_a, admin_a):
        customer = audit_service.create_entity(_new_customer(org_a), actor(admin_a), "Onboarding")
        db_session.commit()

        [entry] = _entries(customer)
        assert entry.action == AuditLog.ACTION_CREATE
        assert entry.org_id == org_a.id
        assert entry.user_id == admin_a.id
        assert entry.user_email == admin_a.email
        assert entry.ip_address == "127.0.0.1"
        assert entry.user_agent == "pytest"
        assert entry.reason == "Onboarding"
        assert entry.auditable_reference == "CUST-AUD-1"
        assert entry.old_values is None
        assert entry.new_values["credit_limit_cents"] == 1_000_000
        assert entry.new_values["name"] == "Audit Farms"
        assert "updated_at" not in entry.new_values
        assert "version_id" not in entry.new_values

    def test_update_records_only_changed_attributes(self, db_session, org_a, admin_a):
        ctx = actor(admin_a)
        customer = audit_service.create_entity(_new_customer(org_a), ctx)
        db_session.commit()

        entry = audit_service.update_entity(
            customer, {"credit_limit_cents": 2_000_000, "name": "Audit Farms"}, ctx, "Harvest season",
        )
        db_session.commit()

        assert entry.action == AuditLog.ACTION_UPDATE
        assert entry.old_values == {"credit_limit_cents": 1_000_000}
        assert entry.new_values == {"credit_limit_cents": 2_000_000}
        assert entry.reason == "Harvest season"

    def test_update_of_excluded_attribute_only_writes_nothing(self, db_session, org_a, admin_a):
        ctx = actor(admin_a)
        customer = audit_service.create_entity(_new_customer(org_a), ctx)
        db_session.commit()

        entry = audit_service.update_entity(customer, {"updated_at": utcnow()}, ctx)
        db_session.commit()

        assert entry is None
        assert len(_entries(customer)) == 1

    def test_update_with_unchanged_values_writes_nothing(self, db_session, org_a, admin_a):
        ctx = actor(admin_a)
        customer = audit_service.create_entity(_new_customer(org_a), ctx)
        db_session.commit()

        assert audit_service.update_entity(customer, {"name": "Audit Farms"}, ctx) is None

    def test_unknown_attribute_is_rejected(self, db_session, org_a, admin_a):
        customer = audit_service.create_entity(_new_customer(org_a), actor(admin_a))

        with pytest.raises(ValueError):
            audit_service.update_entity(customer, {"favourite_colour": "green"}, actor(admin_a))

    def test_delete_soft_deletes_and_records_last_state(self, db_session, org_a, admin_a):
        ctx = actor(admin_a)
        customer = audit_service.create_entity(_new_customer(org_a), ctx)
        db_session.commit()

        audit_service.delete_entity(customer, ctx, "Duplicate record")
        db_session.commit()

        assert db_session.get(Customer, customer.id).deleted_at is not None
        entries = _entries(customer)
        assert [e.action for e in entries] == ["CREATE", "DELETE"]
        assert entries[1].old_values["customer_code"] == "CUST-AUD-1"
        assert entries[1].new_values is None
        assert entries[1].reason == "Duplicate record"

    def test_reason_is_not_reused_by_the_next_call(self, db_session, org_a, admin_a):
        ctx = actor(admin_a)
        customer = audit_service.create_entity(_new_customer(org_a), ctx, "First reason")
        audit_service.update_entity(customer, {"phone": "0800"}, ctx)
        db_session.commit()

        create_entry, update_entry = _entries(customer)
        assert create_entry.reason == "First reason"
        assert update_entry.reason is None

    def test_system_actor_is_recorded_as_system(self, db_session, org_a):
        customer = audit_service.create_entity(_new_customer(org_a), ActorContext.system(org_a.id))
        db_session.commit()

        [entry] = _entries(customer)
        assert entry.user_id is None
        assert entry.user_email == "system"


class TestRedaction:

    def test_password_hash_is_redacted(self, db_session, org_a, admin_a):
        ctx = actor(admin_a)
        user = User(org_id=org_a.id, username="newbie", email="newbie@gva.test", password_hash="$2b$12$secret")
        audit_service.create_entity(user, ctx)
        audit_service.update_entity(user, {"password_hash": "$2b$12$other"}, ctx)
        db_session.commit()

        created, updated = _entries(user)
        assert created.new_values["password_hash"] == REDACTED
        assert updated.old_values == {"password_hash": REDACTED}
        assert updated.new_values == {"password_hash": REDACTED}

    def test_model_specific_exclusions_apply(self, db_session, org_a, admin_a):
        ctx = actor(admin_a)
        user = User(org_id=org_a.id, username="newbie", email="newbie@gva.test", password_hash="x")
        audit_service.create_entity(user, ctx)
        db_session.commit()

        assert audit_service.update_entity(user, {"last_login_at": utcnow()}, ctx) is None

    def test_log_action_data_is_redacted(self, db_session, org_a, admin_a):
        entry = audit_service.log_action(
            admin_a, "LOGIN", actor(admin_a), data={"api_key": "abc", "ip": "1.2.3.4"},
        )
        db_session.commit()

        assert entry.new_values == {"api_key": REDACTED, "ip": "1.2.3.4"}

    def test_sensitive_keys_match_regardless_of_case(self):
        filtered = filter_auditable_attributes(
            {"Password": "a", "API_KEY": "k", "Session_Token": "t", "name": "Green Farms"},
        )

        assert filtered == {
            "Password": REDACTED,
            "API_KEY": REDACTED,
            "Session_Token": REDACTED,
            "name": "Green Farms",
        }

    def test_changed_password_value_is_never_recorded(self):
        old_values, new_values = changed_attributes({"password": "a"}, {"password": "b"})

        assert old_values == {"password": REDACTED}
        assert new_values == {"password": REDACTED}

    def test_mixed_case_log_action_keys_are_redacted(self, db_session, org_a, admin_a):
        entry = audit_service.log_action(
            admin_a, "LOGIN", actor(admin_a),
            data={"Password": "Secret123!", "X_API_KEY": "abc", "user_agent": "curl"},
            old_data={"PASSWORD": "Old123!"},
        )
        db_session.commit()

        assert entry.new_values == {"Password": REDACTED, "X_API_KEY": "abc", "user_agent": "curl"}
        assert entry.old_values == {"PASSWORD": REDACTED}


class TestImmutability:

    def test_entries_cannot_be_modified(self, db_session, org_a, admin_a):
        customer = audit_service.create_entity(_new_customer(org_a), actor(admin_a))
        db_session.commit()
        [entry] = _entries(customer)

        entry.reason = "rewritten history"
        with pytest.raises(AuditLogImmutableError):
            db_session.flush()
        db_session.rollback()

    def test_entries_cannot_be_deleted(self, db_session, org_a, admin_a):
        customer = audit_service.create_entity(_new_customer(org_a), actor(admin_a))
        db_session.commit()
        [entry] = _entries(customer)

        db_session.delete(entry)
        with pytest.raises(AuditLogImmutableError):
            db_session.flush()
        db_session.rollback()


class TestQueriesAndPruning:

    def _old_entry(self, org, days):
        entry = AuditLog(
            org_id=org.id,
            user_email="system",
            action="UPDATE",
            auditable_type="Customer",
            auditable_id=1,
            created_at=utcnow() - timedelta(days=days),
        )
        db.session.add(entry)
        return entry

    def test_prune_removes_only_entries_past_retention(self, db_session, org_a, org_b):
        self._old_entry(org_a, 400)
        self._old_entry(org_a, 10)
        self._old_entry(org_b, 400)
        db_session.commit()

        deleted = audit_service.prune_audit_logs(365, org_id=org_a.id)

        assert deleted == 1
        assert db_session.query(AuditLog).filter_by(org_id=org_a.id).count() == 1
        assert db_session.query(AuditLog).filter_by(org_id=org_b.id).count() == 1

    def test_zero_retention_keeps_everything(self, db_session, org_a):
        self._old_entry(org_a, 4000)
        db_session.commit()

        assert audit_service.prune_audit_logs(0) == 0
        assert db_session.query(AuditLog).count() == 1

    def test_list_is_tenant_scoped_and_filterable(self, db_session, org_a, org_b, admin_a, admin_b):
        audit_service.create_entity(_new_customer(org_a), actor(admin_a))
        other = _new_customer(org_b)
        audit_service.create_entity(other, actor(admin_b))
        db_session.commit()

        rows, total = audit_service.list_audit_logs(org_a.id, auditable_type="Customer")
        assert total == 1
        assert rows[0]["org_id"] == org_a.id
        assert rows[0]["auditable_display_type"] == "Customer"

        rows, total = audit_service.list_audit_logs(org_a.id, action="delete")
        assert total == 0
