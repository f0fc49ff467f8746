# Overview: Locking and retry helpers shared by every write path.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import AlreadyResolvedError, TransientStoreError
from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id
    counter on Product turns a lost update into StaleDataError instead.
    """
    return query.with_for_update()


def conditional_transition(model, *, record_id: int, tenant_id: str, status_column: str,
                           expected: str, values: dict) -> None:
    """
    UPDATE ... SET values WHERE id = :id AND <status_column> = :expected.

    Exactly one concurrent caller can win; everyone else sees rowcount 0 and
    gets AlreadyResolvedError.
    """
    column = getattr(model, status_column)
    updated = (
        db.session.query(model)
        .filter(model.id == record_id, model.tenant_id == tenant_id, column == expected)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        raise AlreadyResolvedError(
            f"{model.__name__} {record_id} is no longer {expected}"
        )


def _retry_settings(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    config = current_app.config
    if attempts is None:
        attempts = config.get("STOCKFLOW_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("STOCKFLOW_RETRY_BACKOFF", 0.1)
    return max(1, attempts), backoff_base


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic version conflicts). func must re-read and re-check its own
    preconditions, since each attempt starts from a rolled-back session.

    Any other exception rolls the session back and propagates unchanged, so
    a domain failure never leaves half a unit of work in the session.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise TransientStoreError(
                    "The stock store is busy; please retry the request"
                ) from exc
            logger.warning(
                "Retrying unit of work after %s (attempt %d/%d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


def read_with_retry(func):
    """Idempotent reads get exactly one retry."""
    return run_with_retry(func, attempts=2, backoff_base=0)
