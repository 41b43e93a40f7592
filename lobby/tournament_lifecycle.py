import logging
from datetime import datetime, timezone
from typing import Optional, List

from flask import current_app

from .models import db, Tournament
from .store import atomic, lock_roster, count_confirmed
from shared.errors import NotFound, InvalidState, Forbidden, ValidationError, InvalidTransition
from shared.events import EventType, state_changed_event, tournament_event
from shared.permissions import Actor, is_admin, can_manage_tournaments, is_organizer_or_admin
from shared.pubsub import EventPublisher
from shared.state_machine import (
    TournamentStateMachine,
    TournamentStatus,
    TournamentFormat,
    GuardContext,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'game', 'format', 'max_participants', 'prize_pool', 'start_date', 'end_date')
REQUIRED_FIELDS = ('name', 'game', 'format', 'max_participants', 'prize_pool', 'start_date')


def parse_datetime(value, field: str) -> Optional[datetime]:
    """Naive UTC datetime from a datetime or ISO 8601 string; aware values are converted."""
    if isinstance(value, str) and value:
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f"{field} must be a valid date")
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    raise ValidationError(f"{field} must be a valid date")


class TournamentLifecycle:
    """
    Owns tournament records and their status:
    - Create/update/delete tournaments behind the field-edit and deletion guards
    - Validate and apply status transitions against the lifecycle table
    - Announce state changes
    """

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    def _min_confirmed(self) -> int:
        return current_app.config.get('MIN_CONFIRMED_TO_START', 2)

    def get_tournament(self, tournament_id: int) -> Tournament:
        tournament = db.session.get(Tournament, tournament_id)
        if tournament is None:
            raise NotFound("Tournament not found")
        return tournament

    def list_tournaments(
        self,
        status: str = None,
        game: str = None,
        format: str = None,
        limit: int = None,
        offset: int = 0
    ) -> List[Tournament]:
        """List tournaments with optional filtering, soonest start first."""
        query = self._filtered_query(status, game, format)
        return query.offset(max(offset, 0)).limit(self._clamp_limit(limit)).all()

    def page_tournaments(
        self,
        status: str = None,
        game: str = None,
        format: str = None,
        page: int = 1,
        limit: int = None
    ) -> dict:
        """
        One page of the filtered listing with its totals.

        Returns:
            {'total', 'page', 'limit', 'count', 'tournaments'}; pages start at 1.
        """
        page = max(page or 1, 1)
        limit = self._clamp_limit(limit)
        query = self._filtered_query(status, game, format)

        total = query.order_by(None).count()
        tournaments = query.offset((page - 1) * limit).limit(limit).all()
        return {
            'total': total,
            'page': page,
            'limit': limit,
            'count': len(tournaments),
            'tournaments': [t.to_dict() for t in tournaments],
        }

    def _clamp_limit(self, limit: Optional[int]) -> int:
        default_limit = current_app.config.get('DEFAULT_PAGE_SIZE', 10)
        max_limit = current_app.config.get('MAX_PAGE_SIZE', 100)
        return min(max(limit or default_limit, 1), max_limit)

    def _filtered_query(self, status, game, format):
        query = Tournament.query
        if status:
            try:
                query = query.filter_by(status=TournamentStatus(status).value)
            except ValueError:
                raise ValidationError(f"Unknown tournament status: {status}")
        if game:
            query = query.filter_by(game=game)
        if format:
            try:
                query = query.filter_by(format=TournamentFormat(format).value)
            except ValueError:
                raise ValidationError("format must be one of: SOLO, TEAM")
        return query.order_by(Tournament.start_date.asc(), Tournament.id.asc())

    def create_tournament(self, data: dict, actor: Actor) -> Tournament:
        """Create a new tournament in DRAFT, owned by the acting organizer."""
        if not can_manage_tournaments(actor):
            raise Forbidden("Only organizers and admins can create tournaments")

        missing = [f for f in REQUIRED_FIELDS if data.get(f) is None]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        fields = self._clean_fields(data)
        tournament = Tournament(
            **fields,
            status=TournamentStatus.DRAFT.value,
            organizer_id=actor.id
        )

        with atomic():
            db.session.add(tournament)

        logger.info(f"Tournament {tournament.id} created by user {actor.id}")
        self._publish(tournament_event(
            EventType.TOURNAMENT_CREATED, tournament.id, actor_id=actor.id, name=tournament.name
        ))
        return tournament

    def update_tournament(self, tournament_id: int, data: dict, actor: Actor) -> Tournament:
        """Edit non-status fields. Terminal tournaments are frozen."""
        tournament = self.get_tournament(tournament_id)
        self._require_owner(tournament, actor, "edit")

        with atomic():
            lock_roster(tournament.id)
            db.session.refresh(tournament)
            self._require_editable(tournament)

            if 'status' in data:
                raise ValidationError("status can only be changed through a transition")

            fields = self._clean_fields(data, current=tournament)
            if 'max_participants' in fields:
                confirmed = count_confirmed(tournament.id)
                if fields['max_participants'] < confirmed:
                    raise ValidationError(
                        f"max_participants cannot be lower than the {confirmed} CONFIRMED registrations"
                    )
            for key, value in fields.items():
                setattr(tournament, key, value)

        logger.info(f"Tournament {tournament.id} updated by user {actor.id}: {sorted(fields)}")
        self._publish(tournament_event(
            EventType.TOURNAMENT_UPDATED, tournament.id, actor_id=actor.id, fields=sorted(fields)
        ))
        return tournament

    def delete_tournament(self, tournament_id: int, actor: Actor) -> None:
        """Delete a tournament that has no CONFIRMED registration."""
        tournament = self.get_tournament(tournament_id)
        self._require_owner(tournament, actor, "delete")

        with atomic():
            lock_roster(tournament.id)
            if count_confirmed(tournament.id) > 0:
                raise InvalidState("Cannot delete a tournament that has CONFIRMED registrations")
            db.session.delete(tournament)

        logger.info(f"Tournament {tournament_id} deleted by user {actor.id}")
        self._publish(tournament_event(EventType.TOURNAMENT_DELETED, tournament_id, actor_id=actor.id))

    def transition(self, tournament_id: int, requested_status, actor: Actor) -> Tournament:
        """Move a tournament along one edge of the lifecycle table."""
        tournament = self.get_tournament(tournament_id)

        try:
            requested = TournamentStatus(requested_status)
        except ValueError:
            raise ValidationError(f"Unknown tournament status: {requested_status}")

        if TournamentStateMachine.requires_admin(requested):
            if not is_admin(actor):
                raise Forbidden(f"Only an admin can move a tournament to {requested.value}")
        elif not is_organizer_or_admin(tournament, actor):
            raise Forbidden(f"Only the organizer or an admin can move a tournament to {requested.value}")

        try:
            with atomic():
                lock_roster(tournament.id)
                db.session.refresh(tournament)
                old_status = tournament.status

                sm = TournamentStateMachine(old_status, min_confirmed=self._min_confirmed())
                context = GuardContext(
                    start_date=tournament.start_date,
                    confirmed_count=count_confirmed(tournament.id),
                )
                new_status = sm.transition(requested, context)
                tournament.status = new_status.value
        except InvalidTransition as e:
            logger.info(f"Rejected transition on tournament {tournament_id}: {e}")
            raise

        logger.info(f"Tournament {tournament_id}: {old_status} -> {new_status.value} by user {actor.id}")
        self._publish(state_changed_event(tournament_id, old_status, new_status.value, actor_id=actor.id))
        return tournament

    def _require_owner(self, tournament: Tournament, actor: Actor, action: str):
        if not can_manage_tournaments(actor) or not is_organizer_or_admin(tournament, actor):
            raise Forbidden(f"Only the organizer or an admin can {action} this tournament")

    def _require_editable(self, tournament: Tournament):
        if TournamentStatus(tournament.status) in TERMINAL_STATUSES:
            raise InvalidState(f"A {tournament.status} tournament can no longer be modified")

    def _clean_fields(self, data: dict, current: Tournament = None) -> dict:
        """Business validation for create (current=None) and partial update."""
        unknown = set(data) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        fields = {}
        now = datetime.utcnow()

        for key in ('name', 'game'):
            if key in data:
                value = data[key]
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(f"{key} is required")
                if len(value) > 100:
                    raise ValidationError(f"{key} must be at most 100 characters")
                fields[key] = value.strip()

        if 'format' in data:
            try:
                fields['format'] = TournamentFormat(data['format']).value
            except ValueError:
                raise ValidationError("format must be one of: SOLO, TEAM")

        if 'max_participants' in data:
            value = data['max_participants']
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError("max_participants must be an integer")
            if value < 2:
                raise ValidationError("max_participants must be at least 2")
            fields['max_participants'] = value

        if 'prize_pool' in data:
            value = data['prize_pool']
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError("prize_pool must be a number")
            if value < 0:
                raise ValidationError("prize_pool must be >= 0")
            fields['prize_pool'] = float(value)

        start_date = current.start_date if current is not None else None
        if 'start_date' in data:
            start_date = parse_datetime(data['start_date'], 'start_date')
            if start_date is None:
                raise ValidationError("start_date is required")
            if start_date <= now:
                raise ValidationError("start_date must be in the future")
            fields['start_date'] = start_date

        end_date = current.end_date if current is not None else None
        if 'end_date' in data:
            end_date = parse_datetime(data['end_date'], 'end_date')
            fields['end_date'] = end_date
        if end_date is not None and start_date is not None and end_date <= start_date:
            raise ValidationError("end_date must be after start_date")

        return fields

    def _publish(self, event):
        self.publisher.publish_tournament_event(event)
