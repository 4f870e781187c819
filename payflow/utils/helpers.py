"""Small helpers shared by blueprints and services."""

import logging

from sqlalchemy.exc import IntegrityError, OperationalError

from payflow.models import db
from payflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def parse_int_list(value, field="ids"):
    """Coerce a JSON array of ids (ints or numeric strings) to ``list[int]``.

    ``None`` means an empty list.  Booleans are rejected even though they
    are ints to Python, so ``[true]`` never turns into department 1.
    """
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{field} must be a list")
    ids = []
    for item in value:
        if isinstance(item, bool):
            raise ValueError(f"{field} must contain integers")
        try:
            ids.append(int(item))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{field} must contain integers") from exc
    return ids


def db_commit_or_error():
    """Commit the route's unit of work.

    Returns None on success, otherwise a ready-to-return error response
    after rolling back: a constraint violation is a 409, anything else a 500.

        err = db_commit_or_error()
        if err:
            return err
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Commit rejected by constraint: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except OperationalError:
        db.session.rollback()
        logger.exception("Database unavailable during commit")
        return api_error(E.DATABASE, "Database error")
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected failure during commit")
        return api_error(E.DATABASE, "Database error")
    return None
