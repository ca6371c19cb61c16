# Overview: Unit-of-work and row locking helpers for the reconciliation services.

from __future__ import annotations

from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import ConsistencyError, InfrastructureError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def unit_of_work():
    """
    Run a block as one database transaction.

    Commits when the block exits cleanly. Any exception rolls the whole
    session back, so a failed call leaves every row as it was. Driver
    failures surface as InfrastructureError; retrying is the caller's call.
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConsistencyError(
            "Write rejected by a database constraint",
            code="CONSTRAINT_VIOLATION",
            details={"error": str(exc.orig)},
        ) from exc
    except (DBAPIError, StaleDataError) as exc:
        db.session.rollback()
        current_app.logger.exception("Unit of work rolled back after store failure")
        raise InfrastructureError(
            "Data store unavailable; transaction rolled back",
            details={"error": str(exc)},
        ) from exc
    except Exception:
        db.session.rollback()
        raise
