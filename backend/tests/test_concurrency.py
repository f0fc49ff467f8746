# Overview: Pytest coverage for the retry and optimistic-version safeguards.

"""
Concurrency Safeguard Tests

- run_with_retry retries StaleDataError / OperationalError as a whole unit
- exhausted retries surface as TransientStoreError
- any other failure rolls back and propagates on the first attempt
- the Product version counter turns a lost update into StaleDataError
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from conftest import bump_version_behind_orm
from stockflow.errors import InsufficientStockError, TransientStoreError
from stockflow.extensions import db
from stockflow.services.concurrency import read_with_retry, run_with_retry


def _locked():
    return OperationalError("UPDATE products", {}, Exception("database is locked"))


class TestRunWithRetry:
    def test_stale_data_retried_then_succeeds(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("version mismatch")
            return "done"

        assert run_with_retry(_op) == "done"
        assert len(calls) == 2

    def test_operational_error_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise _locked()
            return "done"

        assert run_with_retry(_op) == "done"
        assert len(calls) == 3

    def test_exhausted_retries_become_transient_error(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise _locked()

        with pytest.raises(TransientStoreError) as exc:
            run_with_retry(_op, attempts=3)
        assert len(calls) == 3
        assert isinstance(exc.value.__cause__, OperationalError)

    def test_domain_error_not_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise InsufficientStockError("short")

        with pytest.raises(InsufficientStockError):
            run_with_retry(_op)
        assert len(calls) == 1

    def test_failed_unit_rolled_back(self, db_session, product):
        def _op():
            product.name = "Half-written"
            db.session.flush()
            raise _locked()

        with pytest.raises(TransientStoreError):
            run_with_retry(_op, attempts=1)
        db.session.refresh(product)
        assert product.name == "Tilapia"

    def test_reads_get_one_retry(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise StaleDataError("gone")

        with pytest.raises(TransientStoreError):
            read_with_retry(_op)
        assert len(calls) == 2


class TestVersionCounter:
    def test_lost_update_detected(self, db_session, product):
        assert product.version_id == 1
        bump_version_behind_orm(product.id)

        product.quantity_box = 3
        with pytest.raises(StaleDataError):
            db.session.flush()
        db.session.rollback()

    def test_version_advances_on_every_write(self, db_session, product):
        product.quantity_box = 9
        db_session.commit()
        assert product.version_id == 2
