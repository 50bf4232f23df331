import pytest

from erp.exceptions import ApprovalRequired, BusinessRuleViolation, NotFoundError, RoleSeparationViolation
from erp.models import AuditLog
from erp.services import purchase_order_service, settings_service

from conftest import actor


LARGE = 150_000_000  # above the 100,000,000 purchase threshold


def _po(amount, supplier="Agro Inputs Ltd"):
    return {"supplier_name": supplier, "total_cents": amount, "notes": "Planting season"}


class TestPurchaseOrders:

    def test_small_order_is_approved_on_creation(self, db_session, org_a, booking_a):
        po = purchase_order_service.create_purchase_order(_po(2_000_000), actor(booking_a))

        assert po.order_number == "PO-00001"
        assert po.status == "APPROVED"
        assert po.approved_at is not None

    def test_large_order_must_be_approved_before_receipt(self, db_session, org_a, booking_a, accountant_a):
        po = purchase_order_service.create_purchase_order(_po(LARGE), actor(booking_a))
        assert po.status == "PENDING"

        with pytest.raises(ApprovalRequired) as exc_info:
            purchase_order_service.receive_purchase_order(po.id, actor(accountant_a))
        assert exc_info.value.context["action"] == "purchase order"

    def test_pending_order_is_not_received_once_threshold_is_lifted(
        self, db_session, org_a, booking_a, admin_a, accountant_a,
    ):
        po = purchase_order_service.create_purchase_order(_po(LARGE), actor(booking_a))
        settings_service.set_setting(org_a.id, "approval.thresholds", {"purchase_order": None}, actor(admin_a))

        with pytest.raises(BusinessRuleViolation) as exc_info:
            purchase_order_service.receive_purchase_order(po.id, actor(accountant_a))

        assert exc_info.value.context["rule"] == "order_not_approved"
        unchanged = purchase_order_service.get_purchase_order(org_a.id, po.id)
        assert unchanged.status == "PENDING"
        assert unchanged.approved_by_user_id is None
        assert unchanged.received_at is None

    def test_creator_cannot_approve(self, db_session, org_a, admin_a):
        po = purchase_order_service.create_purchase_order(_po(LARGE), actor(admin_a))

        with pytest.raises(RoleSeparationViolation):
            purchase_order_service.approve_purchase_order(po.id, actor(admin_a))

    def test_approve_then_receive(self, db_session, org_a, booking_a, approver_a, accountant_a):
        po = purchase_order_service.create_purchase_order(_po(LARGE), actor(booking_a))

        approved = purchase_order_service.approve_purchase_order(po.id, actor(approver_a), "Budgeted")
        assert approved.approved_by_user_id == approver_a.id
        entry = db_session.query(AuditLog).filter_by(
            auditable_type="PurchaseOrder", auditable_id=po.id, action="APPROVE",
        ).one()
        assert entry.user_id == approver_a.id
        assert entry.new_values["approved_at"] is not None

        received = purchase_order_service.receive_purchase_order(po.id, actor(accountant_a))
        assert received.status == "RECEIVED"
        assert received.received_at is not None

        with pytest.raises(BusinessRuleViolation) as exc_info:
            purchase_order_service.receive_purchase_order(po.id, actor(accountant_a))
        assert exc_info.value.context["rule"] == "invalid_status"

    @pytest.mark.parametrize("data", [_po(0), _po(-1), _po(10, supplier=" "), {"supplier_name": "X"}])
    def test_invalid_input(self, db_session, org_a, booking_a, data):
        with pytest.raises(ValueError):
            purchase_order_service.create_purchase_order(data, actor(booking_a))

    def test_other_tenant_cannot_see_order(self, db_session, org_a, booking_a, admin_b):
        po = purchase_order_service.create_purchase_order(_po(1_000), actor(booking_a))

        with pytest.raises(NotFoundError):
            purchase_order_service.get_purchase_order(admin_b.org_id, po.id)
