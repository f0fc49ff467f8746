# Overview: Pytest coverage for retroactive sale edits and deletions.

"""
Sales Audit Tests

Starting stock for every test: 10 boxes / 15.5 kg, 10 kg per box,
2.60 per kg, 25.00 per box.
"""

from decimal import Decimal

import pytest

from stockflow.errors import (
    AlreadyResolvedError,
    ConflictingPendingAuditError,
    InsufficientStockError,
    NotFoundError,
    UnauthorizedActionError,
)
from stockflow.extensions import db
from stockflow.models import Sale, SaleAudit
from stockflow.services import sales_audit_service, sales_service
from stockflow.validation import ValidationError


CASH = {"payment_method": "cash"}


@pytest.fixture
def sale(db_session, worker, product):
    """10 kg sold from loose stock: projection 10 boxes / 5.5 kg."""
    sale, _ = sales_service.create_fish_sale(worker, product.id, "10", 0, CASH)
    return sale


def _stock(product):
    db.session.refresh(product)
    return product.quantity_box, product.quantity_kg


class TestProposeEdit:
    def test_quantity_change_recorded_as_diff(self, db_session, worker, sale):
        audit = sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "8"}, "Customer returned 2kg")

        assert audit.approval_status == "pending"
        assert audit.audit_type == "quantity_change"
        assert audit.kg_change == Decimal("-2")
        assert audit.boxes_change == 0
        assert Decimal(audit.old_values["kg_quantity"]) == Decimal("10")
        assert audit.new_values["boxes_quantity"] == 0
        assert Decimal(audit.new_values["kg_quantity"]) == Decimal("8")

    def test_payment_method_change(self, db_session, worker, sale):
        audit = sales_audit_service.propose_sale_edit(worker, sale.id, {"payment_method": "momo_pay"}, "Paid by phone")
        assert audit.audit_type == "payment_method_change"
        assert audit.new_values == {"payment_method": "momo_pay"}
        assert audit.kg_change == 0

    def test_unknown_field_rejected(self, db_session, worker, sale):
        with pytest.raises(ValidationError):
            sales_audit_service.propose_sale_edit(worker, sale.id, {"total_amount": "1"}, "Discount")

    def test_no_effective_change_rejected(self, db_session, worker, sale):
        with pytest.raises(ValidationError):
            sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "10.000"}, "Typo")

    def test_mixed_change_kinds_rejected(self, db_session, worker, sale):
        with pytest.raises(ValidationError):
            sales_audit_service.propose_sale_edit(
                worker, sale.id, {"kg_quantity": "8", "payment_method": "momo_pay"}, "Both"
            )

    def test_reason_required(self, db_session, worker, sale):
        with pytest.raises(ValidationError):
            sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "8"}, "")

    def test_infeasible_increase_rejected_up_front(self, db_session, worker, sale):
        """10 kg sold + 105.5 kg left = 115.5 kg max for this sale."""
        with pytest.raises(InsufficientStockError):
            sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "116"}, "More")

    def test_second_pending_proposal_conflicts(self, db_session, worker, sale):
        sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "8"}, "First")
        with pytest.raises(ConflictingPendingAuditError):
            sales_audit_service.propose_sale_deletion(worker, sale.id, "Second")
        with pytest.raises(ConflictingPendingAuditError):
            sales_audit_service.propose_sale_edit(worker, sale.id, {"payment_method": "momo_pay"}, "Third")

    def test_new_proposal_allowed_after_resolution(self, db_session, worker, manager, sale):
        first = sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "8"}, "First")
        sales_audit_service.reject_sale_audit(manager, first.id, "No")
        second = sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "9"}, "Second")
        assert second.approval_status == "pending"

    def test_foreign_sale_not_found(self, db_session, foreign_manager, sale):
        with pytest.raises(NotFoundError):
            sales_audit_service.propose_sale_deletion(foreign_manager, sale.id, "Not mine")


class TestApproveEdit:
    def test_edit_round_trip_restores_then_reapplies(self, db_session, worker, manager, product, sale):
        """Stock after approval equals stock before the sale minus the new quantity."""
        assert _stock(product) == (10, Decimal("5.5"))
        audit = sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "8"}, "Returned 2kg")

        approved = sales_audit_service.approve_sale_audit(manager, audit.id)
        assert approved.approval_status == "approved"
        assert approved.approved_by == "manager-1"

        assert _stock(product) == (10, Decimal("7.5"))
        db.session.refresh(sale)
        assert sale.kg_quantity == Decimal("8")
        assert sale.total_amount == Decimal("20.80")
        assert sale.amount_paid == Decimal("26.00")
        assert sale.remaining_amount == Decimal("0")

    def test_increase_reprices_at_snapshotted_rate(self, db_session, worker, manager, product, sale):
        product.price_per_kg = Decimal("9.99")
        db_session.commit()

        audit = sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "20"}, "Short-weighed")
        sales_audit_service.approve_sale_audit(manager, audit.id)

        db.session.refresh(sale)
        assert sale.total_amount == Decimal("52.00")
        assert sale.remaining_amount == Decimal("26.00")
        # 15.5 kg restored; 20 kg needs one box broken
        assert _stock(product) == (9, Decimal("5.5"))

    def test_increase_revalidated_at_approval(self, db_session, worker, manager, product, sale):
        audit = sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "100"}, "Bulk")
        # Stock shrinks between proposal and approval
        sales_service.create_fish_sale(worker, product.id, "0", 5, CASH)

        with pytest.raises(InsufficientStockError):
            sales_audit_service.approve_sale_audit(manager, audit.id)

        db.session.expire_all()
        assert db.session.get(SaleAudit, audit.id).approval_status == "pending"
        assert db.session.get(Sale, sale.id).kg_quantity == Decimal("10")
        assert _stock(product) == (5, Decimal("5.5"))

    def test_payment_method_change_touches_nothing_else(self, db_session, worker, manager, product, sale):
        audit = sales_audit_service.propose_sale_edit(worker, sale.id, {"payment_method": "bank_transfer"}, "Card")
        sales_audit_service.approve_sale_audit(manager, audit.id)
        db.session.refresh(sale)
        assert sale.payment_method == "bank_transfer"
        assert sale.kg_quantity == Decimal("10")
        assert _stock(product) == (10, Decimal("5.5"))

    def test_worker_cannot_approve(self, db_session, worker, sale):
        audit = sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "8"}, "Returned 2kg")
        with pytest.raises(UnauthorizedActionError):
            sales_audit_service.approve_sale_audit(worker, audit.id)

    def test_double_approval_refused(self, db_session, worker, manager, product, sale):
        audit = sales_audit_service.propose_sale_edit(worker, sale.id, {"kg_quantity": "8"}, "Returned 2kg")
        sales_audit_service.approve_sale_audit(manager, audit.id)
        with pytest.raises(AlreadyResolvedError):
            sales_audit_service.approve_sale_audit(manager, audit.id)
        assert _stock(product) == (10, Decimal("7.5"))


class TestDeletion:
    def test_deletion_restores_stock_and_keeps_audits(self, db_session, worker, manager, product, sale):
        earlier = sales_audit_service.propose_sale_edit(worker, sale.id, {"payment_method": "momo_pay"}, "Phone")
        sales_audit_service.reject_sale_audit(manager, earlier.id, "No")

        audit = sales_audit_service.propose_sale_deletion(worker, sale.id, "Entered twice")
        assert audit.old_values["id"] == sale.id
        sale_id = sale.id

        sales_audit_service.approve_sale_audit(manager, audit.id)

        assert db.session.get(Sale, sale_id) is None
        assert _stock(product) == (10, Decimal("15.5"))
        db.session.expire_all()
        audits = db.session.query(SaleAudit).order_by(SaleAudit.id).all()
        assert [a.sale_id for a in audits] == [None, None]
        assert audits[1].approval_status == "approved"

    def test_rejected_deletion_keeps_sale(self, db_session, worker, manager, product, sale):
        audit = sales_audit_service.propose_sale_deletion(worker, sale.id, "Entered twice")
        rejected = sales_audit_service.reject_sale_audit(manager, audit.id, "It was real")
        assert rejected.rejection_reason == "It was real"
        assert db.session.get(Sale, sale.id) is not None
        assert _stock(product) == (10, Decimal("5.5"))


def test_list_sale_audits(db_session, worker, manager, sale):
    audit = sales_audit_service.propose_sale_deletion(worker, sale.id, "Entered twice")
    page = sales_audit_service.list_sale_audits(manager, approval_status="pending")
    assert page["total"] == 1
    assert page["items"][0]["id"] == audit.id
    assert sales_audit_service.list_sale_audits(manager, audit_type="quantity_change")["total"] == 0
