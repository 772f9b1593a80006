# Overview: Transaction boundary and row locking shared by every mutating service.

from __future__ import annotations

from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The stock ledger's guarded UPDATE keeps counters safe either way.
    """
    return query.with_for_update()


@contextmanager
def transaction():
    """
    One atomic unit of work.

    Commits when the block exits normally and rolls back on any exception,
    so a failure anywhere leaves nothing persisted. Lock timeouts, stale
    version_id rows and uniqueness clashes surface as ConflictError, which
    callers may retry. Nothing is retried here.
    """
    try:
        yield db.session
        db.session.commit()
    except (OperationalError, StaleDataError) as exc:
        db.session.rollback()
        current_app.logger.warning("Transaction rolled back on concurrent modification: %s", exc)
        raise ConflictError("Concurrent modification detected, please retry") from exc
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.warning("Transaction rolled back on integrity error: %s", exc.orig)
        raise ConflictError("Conflicting data, record already exists or changed") from exc
    except BaseException:
        db.session.rollback()
        raise
