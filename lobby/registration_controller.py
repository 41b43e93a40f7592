import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import or_

from .models import db, Tournament, Registration, Team
from .store import atomic, lock_roster, count_confirmed
from shared.errors import (
    NotFound,
    InvalidState,
    FormatMismatch,
    Duplicate,
    CapacityExceeded,
    Forbidden,
    ValidationError,
)
from shared.events import EventType, registration_event
from shared.permissions import Actor, is_organizer_or_admin, is_participant, is_team_captain
from shared.pubsub import EventPublisher
from shared.state_machine import TournamentStatus, TournamentFormat, RegistrationStatus

logger = logging.getLogger(__name__)


class RegistrationAdmissionController:
    """
    Admits registrations into tournaments.

    Capacity counts CONFIRMED registrations only; PENDING ones are a
    request queue and never block admission. Every count-then-write runs
    under the tournament's roster lock (see lobby.store), so the CONFIRMED
    count can never pass max_participants, whatever the interleaving of
    concurrent register and confirm calls.
    """

    def __init__(self, publisher: EventPublisher = None):
        self.publisher = publisher or EventPublisher()

    def register(self, tournament_id: int, participant: Optional[dict], actor: Actor) -> Registration:
        """Create a PENDING registration for the actor (SOLO) or their team (TEAM)."""
        tournament = self._load_tournament(tournament_id)
        team_id = (participant or {}).get('team_id')

        if tournament.format == TournamentFormat.TEAM.value:
            duplicate_message = "This team is already registered for this tournament"
        else:
            duplicate_message = "This player is already registered for this tournament"

        with atomic(duplicate_message=duplicate_message):
            lock_roster(tournament.id)
            db.session.refresh(tournament)

            if tournament.status != TournamentStatus.OPEN.value:
                raise InvalidState(
                    f"Tournament must be OPEN to accept registrations (current status: {tournament.status})"
                )

            is_team = tournament.format == TournamentFormat.TEAM.value
            if not is_team and team_id is not None:
                raise FormatMismatch("SOLO tournament: team registrations are not allowed")
            if is_team and team_id is None:
                raise FormatMismatch("TEAM tournament: team_id is required")

            if is_team:
                existing = Registration.query.filter_by(tournament_id=tournament.id, team_id=team_id).first()
            else:
                existing = Registration.query.filter_by(tournament_id=tournament.id, player_id=actor.id).first()
            if existing is not None:
                raise Duplicate(duplicate_message)

            self._check_capacity(tournament)

            if is_team:
                team = db.session.get(Team, team_id)
                if team is None:
                    raise NotFound("Team not found")
                if not is_team_captain(team, actor):
                    raise Forbidden("Only the team captain can register the team")

            registration = Registration(
                tournament_id=tournament.id,
                status=RegistrationStatus.PENDING.value,
                player_id=None if is_team else actor.id,
                team_id=team_id if is_team else None,
                confirmed_at=None
            )
            db.session.add(registration)
            db.session.flush()

        logger.info(
            f"Registration {registration.id} created for tournament {tournament_id} "
            f"({'team ' + str(team_id) if team_id is not None else 'player ' + str(actor.id)})"
        )
        self._publish(registration_event(EventType.REGISTRATION_CREATED, registration, actor_id=actor.id))
        return registration

    def update_status(
        self,
        tournament_id: int,
        registration_id: int,
        new_status,
        actor: Actor
    ) -> Registration:
        """Re-status a registration. Confirmation is capacity-checked."""
        try:
            new_status = RegistrationStatus(new_status)
        except ValueError:
            raise ValidationError(f"Unknown registration status: {new_status}")

        tournament, registration = self._load_pair(tournament_id, registration_id)
        self._authorize(tournament, registration, actor, "modify")

        with atomic():
            lock_roster(tournament.id)
            db.session.refresh(tournament)
            registration = self._reload_registration(tournament.id, registration_id)
            old_status = registration.status

            if new_status == RegistrationStatus.CONFIRMED:
                self._check_capacity(tournament)
                registration.confirmed_at = datetime.utcnow()
            else:
                registration.confirmed_at = None
            registration.status = new_status.value

        logger.info(
            f"Registration {registration_id} in tournament {tournament_id}: "
            f"{old_status} -> {new_status.value} by user {actor.id}"
        )
        self._publish(registration_event(
            EventType.REGISTRATION_STATUS_CHANGED, registration, actor_id=actor.id
        ))
        return registration

    def list_registrations(self, tournament_id: int, actor: Actor) -> List[Registration]:
        """Organizer/admin see every registration; others only their own."""
        tournament = self._load_tournament(tournament_id)

        query = Registration.query.filter(Registration.tournament_id == tournament.id)
        if not is_organizer_or_admin(tournament, actor):
            query = query.outerjoin(Team, Registration.team_id == Team.id).filter(
                or_(
                    Registration.player_id == actor.id,
                    Team.captain_id == actor.id
                )
            )

        return query.order_by(Registration.registered_at.desc(), Registration.id.desc()).all()

    def remove(self, tournament_id: int, registration_id: int, actor: Actor) -> None:
        """Hard-delete a registration. Only PENDING ones can go."""
        tournament, registration = self._load_pair(tournament_id, registration_id)
        self._authorize(tournament, registration, actor, "cancel")

        with atomic():
            lock_roster(tournament.id)
            registration = self._reload_registration(tournament.id, registration_id)
            if registration.status != RegistrationStatus.PENDING.value:
                raise InvalidState(
                    f"Only PENDING registrations can be deleted (current status: {registration.status})"
                )
            event = registration_event(EventType.REGISTRATION_WITHDRAWN, registration, actor_id=actor.id)
            db.session.delete(registration)

        logger.info(f"Registration {registration_id} removed from tournament {tournament_id} by user {actor.id}")
        self._publish(event)

    def _load_tournament(self, tournament_id: int) -> Tournament:
        tournament = db.session.get(Tournament, tournament_id)
        if tournament is None:
            raise NotFound("Tournament not found")
        return tournament

    def _load_pair(self, tournament_id: int, registration_id: int) -> Tuple[Tournament, Registration]:
        tournament = self._load_tournament(tournament_id)
        registration = db.session.get(Registration, registration_id)
        if registration is None or registration.tournament_id != tournament.id:
            raise NotFound("Registration not found")
        return tournament, registration

    def _reload_registration(self, tournament_id: int, registration_id: int) -> Registration:
        """Fresh read once the roster lock is held; it may have been removed meanwhile."""
        registration = Registration.query.populate_existing().filter_by(
            id=registration_id,
            tournament_id=tournament_id
        ).first()
        if registration is None:
            raise NotFound("Registration not found")
        return registration

    def _authorize(self, tournament: Tournament, registration: Registration, actor: Actor, action: str):
        if not is_organizer_or_admin(tournament, actor) and not is_participant(registration, actor):
            raise Forbidden(f"Only the organizer or the participant can {action} this registration")

    def _check_capacity(self, tournament: Tournament):
        confirmed = count_confirmed(tournament.id)
        if confirmed >= tournament.max_participants:
            logger.info(
                f"Tournament {tournament.id} is full: {confirmed}/{tournament.max_participants} confirmed"
            )
            raise CapacityExceeded(
                f"Tournament is full ({confirmed}/{tournament.max_participants} CONFIRMED participants)"
            )

    def _publish(self, event):
        self.publisher.publish_tournament_event(event)
