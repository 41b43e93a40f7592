"""
Transaction scope and per-tournament serialization for admission writes.

Every check-then-write on a tournament's roster (capacity, uniqueness,
lifecycle guards) runs inside ``atomic()`` after ``lock_roster()``:

    with atomic():
        lock_roster(tournament.id)
        ... re-read counts, validate, write ...

``lock_roster`` is a conditional UPDATE on the tournament row. The write
lock it takes (a row lock on PostgreSQL, the database write lock on SQLite)
is held until the surrounding transaction commits or rolls back, so two
admissions on the same tournament can never interleave their count and
their write. Different tournaments lock different rows.
"""
import logging
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from .models import db, Tournament, Registration
from shared.errors import Duplicate, NotFound
from shared.state_machine import RegistrationStatus

logger = logging.getLogger(__name__)


@contextmanager
def atomic(duplicate_message: str = None):
    """Commit on success, roll back on any failure.

    With ``duplicate_message`` set, a unique-constraint violation at flush or
    commit time means a concurrent caller inserted the same participant
    first, and it surfaces as Duplicate.
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.warning(f"Integrity violation rolled back: {e.orig}")
        if duplicate_message is None:
            raise
        raise Duplicate(duplicate_message) from e
    except Exception:
        db.session.rollback()
        raise


def lock_roster(tournament_id: int) -> int:
    """Take the tournament's roster lock for the current transaction.

    Returns the new roster version.
    """
    updated = Tournament.query.filter(Tournament.id == tournament_id).update(
        {
            Tournament.roster_version: Tournament.roster_version + 1,
            Tournament.updated_at: datetime.utcnow(),
        },
        synchronize_session=False
    )
    if updated == 0:
        raise NotFound("Tournament not found")

    return db.session.query(Tournament.roster_version).filter(
        Tournament.id == tournament_id
    ).scalar()


def count_confirmed(tournament_id: int) -> int:
    return db.session.query(func.count(Registration.id)).filter(
        Registration.tournament_id == tournament_id,
        Registration.status == RegistrationStatus.CONFIRMED.value
    ).scalar()
