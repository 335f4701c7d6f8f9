# Overview: Service-layer helpers for concurrency; row locking and backing-store error translation.

from __future__ import annotations

from functools import wraps

from flask import current_app
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import BackingStoreError, ConflictError, CoreError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def translates_store_errors(func):
    """
    Map SQLAlchemy failures raised inside a service call onto the core taxonomy.

    - IntegrityError (unique/check violations) -> ConflictError
    - StaleDataError (optimistic locking) -> ConflictError
    - OperationalError, pool timeouts, other DBAPI errors -> BackingStoreError

    The session is rolled back so no partial write survives. Nothing is
    retried here: retries belong to the caller, with backoff.
    CoreError subclasses propagate verbatim after the rollback.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CoreError:
            db.session.rollback()
            raise
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError(f"Conflicting write: {exc.orig}") from exc
        except StaleDataError as exc:
            db.session.rollback()
            raise ConflictError("Record was modified concurrently") from exc
        except (OperationalError, PoolTimeoutError, DBAPIError) as exc:
            db.session.rollback()
            current_app.logger.exception("Backing store failure in %s", func.__name__)
            raise BackingStoreError(f"Backing store unavailable: {exc.__class__.__name__}") from exc
    return wrapper
