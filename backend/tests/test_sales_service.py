# Overview: Pytest coverage for allocation-backed sale creation.

from decimal import Decimal

import pytest

from conftest import bump_version_behind_orm, make_product, TENANT_B
from stockflow.errors import InsufficientStockError, NotFoundError, TransientStoreError
from stockflow.extensions import db
from stockflow.models import Sale
from stockflow.services import sales_service
from stockflow.validation import ValidationError


CASH = {"payment_method": "cash"}


class TestCreateFishSale:
    def test_sale_and_projection_written_together(self, db_session, worker, product):
        sale, allocation = sales_service.create_fish_sale(worker, product.id, "20", 0, CASH)

        assert sale.id is not None
        assert sale.kg_quantity == Decimal("20")
        assert sale.boxes_quantity == 0
        assert sale.total_amount == Decimal("52.00")
        assert sale.payment_status == "paid"
        assert sale.amount_paid == Decimal("52.00")
        assert sale.remaining_amount == Decimal("0")
        assert sale.performed_by == "worker-1"
        assert allocation.boxes_converted == 1

        db.session.refresh(product)
        assert product.quantity_box == 9
        assert product.quantity_kg == Decimal("5.5")

    def test_unit_prices_and_profit_snapshotted(self, db_session, worker, product):
        sale, _ = sales_service.create_fish_sale(worker, product.id, "1", 1, CASH)
        assert sale.kg_price == Decimal("2.60")
        assert sale.box_price == Decimal("25.00")
        assert sale.profit_per_kg == Decimal("0.60")
        assert sale.profit_per_box == Decimal("5.00")

    def test_insufficient_stock_writes_nothing(self, db_session, worker, product):
        with pytest.raises(InsufficientStockError) as exc:
            sales_service.create_fish_sale(worker, product.id, "120", 0, CASH)
        assert exc.value.available_kg == Decimal("115.5")

        assert db.session.query(Sale).count() == 0
        db.session.refresh(product)
        assert product.quantity_box == 10
        assert product.quantity_kg == Decimal("15.5")

    def test_payment_method_required(self, db_session, worker, product):
        with pytest.raises(ValidationError):
            sales_service.create_fish_sale(worker, product.id, "1", 0, {})

    def test_pending_payment_needs_client(self, db_session, worker, product):
        with pytest.raises(ValidationError):
            sales_service.create_fish_sale(
                worker, product.id, "1", 0, {"payment_method": "momo_pay", "payment_status": "pending"}
            )

    def test_pending_payment_owes_everything(self, db_session, worker, product):
        sale, _ = sales_service.create_fish_sale(
            worker, product.id, "10", 0,
            {"payment_method": "momo_pay", "payment_status": "pending", "client_name": "Ama"},
        )
        assert sale.amount_paid == Decimal("0")
        assert sale.remaining_amount == Decimal("26.00")

    def test_partial_payment(self, db_session, worker, product):
        sale, _ = sales_service.create_fish_sale(
            worker, product.id, "10", 0,
            {"payment_method": "bank_transfer", "payment_status": "partial",
             "client_name": "Kofi", "amount_paid": "10.00"},
        )
        assert sale.amount_paid == Decimal("10.00")
        assert sale.remaining_amount == Decimal("16.00")

    def test_partial_payment_cannot_cover_total(self, db_session, worker, product):
        with pytest.raises(ValidationError):
            sales_service.create_fish_sale(
                worker, product.id, "10", 0,
                {"payment_method": "cash", "payment_status": "partial",
                 "client_name": "Kofi", "amount_paid": "26.00"},
            )

    def test_inactive_product_cannot_be_sold(self, db_session, worker, product):
        product.is_active = False
        db_session.commit()
        with pytest.raises(NotFoundError):
            sales_service.create_fish_sale(worker, product.id, "1", 0, CASH)

    def test_foreign_product_not_found(self, db_session, worker):
        foreign = make_product(db_session, tenant_id=TENANT_B)
        with pytest.raises(NotFoundError):
            sales_service.create_fish_sale(worker, foreign.id, "1", 0, CASH)

    def test_successive_sales_never_go_negative(self, db_session, worker, product):
        """Draw the whole 115.5 kg in pieces; the next request fails cleanly."""
        for kg in ("50", "50", "15.5"):
            sales_service.create_fish_sale(worker, product.id, kg, 0, CASH)
        db.session.refresh(product)
        assert product.quantity_box == 0
        assert product.quantity_kg == 0

        with pytest.raises(InsufficientStockError):
            sales_service.create_fish_sale(worker, product.id, "0.001", 0, CASH)


class TestSaleReads:
    def test_get_sale_is_tenant_scoped(self, db_session, worker, foreign_manager, product):
        sale, _ = sales_service.create_fish_sale(worker, product.id, "1", 0, CASH)
        assert sales_service.get_sale(worker, sale.id).id == sale.id
        with pytest.raises(NotFoundError):
            sales_service.get_sale(foreign_manager, sale.id)

    def test_list_sales_filters(self, db_session, worker, product):
        sales_service.create_fish_sale(worker, product.id, "1", 0, CASH)
        sales_service.create_fish_sale(
            worker, product.id, "1", 0,
            {"payment_method": "cash", "payment_status": "pending", "client_name": "Ama"},
        )
        assert sales_service.list_sales(worker)["total"] == 2
        pending = sales_service.list_sales(worker, payment_status="pending")
        assert pending["total"] == 1
        assert pending["items"][0]["client_name"] == "Ama"


class TestConcurrentWriters:
    def test_stale_projection_retried_not_lost(self, db_session, worker, product, monkeypatch):
        """Another writer bumps the product mid-sale; the sale re-reads and lands once."""
        calls = []
        real_allocate = sales_service.allocate

        def racing_allocate(levels, requested_kg, requested_boxes):
            calls.append(1)
            if len(calls) == 1:
                bump_version_behind_orm(levels.id)
            return real_allocate(levels, requested_kg, requested_boxes)

        monkeypatch.setattr(sales_service, "allocate", racing_allocate)

        sale, _ = sales_service.create_fish_sale(worker, product.id, "20", 0, CASH)

        assert len(calls) == 2
        assert db.session.query(Sale).count() == 1
        db.session.refresh(product)
        assert product.quantity_box == 9
        assert product.quantity_kg == Decimal("5.5")

    def test_persistent_conflict_surfaces_as_transient(self, db_session, worker, product, monkeypatch):
        real_allocate = sales_service.allocate

        def always_racing(levels, requested_kg, requested_boxes):
            bump_version_behind_orm(levels.id)
            return real_allocate(levels, requested_kg, requested_boxes)

        monkeypatch.setattr(sales_service, "allocate", always_racing)

        with pytest.raises(TransientStoreError):
            sales_service.create_fish_sale(worker, product.id, "20", 0, CASH)
        assert db.session.query(Sale).count() == 0
        db.session.refresh(product)
        assert product.quantity_box == 10
