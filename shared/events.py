from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
import json


class EventType(str, Enum):
    # Tournament records
    TOURNAMENT_CREATED = "tournament.created"
    TOURNAMENT_UPDATED = "tournament.updated"
    TOURNAMENT_DELETED = "tournament.deleted"

    # State changes
    STATE_CHANGED = "state.changed"

    # Registration events
    REGISTRATION_CREATED = "registration.created"
    REGISTRATION_STATUS_CHANGED = "registration.status_changed"
    REGISTRATION_WITHDRAWN = "registration.withdrawn"


@dataclass(frozen=True)
class Event:
    """A committed change to one tournament, announced after the write."""
    type: EventType
    tournament_id: int
    payload: dict = field(default_factory=dict)
    actor_id: Optional[int] = None
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def channel(self) -> str:
        return f"tournament:{self.tournament_id}:events"

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "tournament_id": self.tournament_id,
            "actor_id": self.actor_id,
            "occurred_at": self.occurred_at.isoformat() + "Z",
            "payload": self.payload
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def tournament_event(event_type: EventType, tournament_id: int, actor_id: int = None, **payload) -> Event:
    return Event(type=event_type, tournament_id=tournament_id, payload=payload, actor_id=actor_id)


def state_changed_event(tournament_id: int, from_state: str, to_state: str, actor_id: int = None) -> Event:
    return Event(
        type=EventType.STATE_CHANGED,
        tournament_id=tournament_id,
        actor_id=actor_id,
        payload={
            "from_state": from_state,
            "to_state": to_state
        }
    )


def registration_event(event_type: EventType, registration, actor_id: int = None) -> Event:
    return Event(
        type=event_type,
        tournament_id=registration.tournament_id,
        actor_id=actor_id,
        payload={
            "registration_id": registration.id,
            "status": registration.status,
            "player_id": registration.player_id,
            "team_id": registration.team_id
        }
    )
