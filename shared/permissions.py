"""
Role and ownership predicates.

All of them work on already-loaded entities and an authenticated actor;
none of them touches the store.
"""
from dataclasses import dataclass

from .state_machine import Role


@dataclass(frozen=True)
class Actor:
    id: int
    role: Role

    def __post_init__(self):
        object.__setattr__(self, 'role', Role(self.role))


def is_admin(actor: Actor) -> bool:
    return actor.role == Role.ADMIN


def can_manage_tournaments(actor: Actor) -> bool:
    return actor.role in (Role.ADMIN, Role.ORGANIZER)


def is_organizer_or_admin(tournament, actor: Actor) -> bool:
    return is_admin(actor) or tournament.organizer_id == actor.id


def is_team_captain(team, actor: Actor) -> bool:
    return team is not None and team.captain_id == actor.id


def is_participant(registration, actor: Actor) -> bool:
    """The registered player, or the captain of the registered team."""
    if registration.player_id is not None and registration.player_id == actor.id:
        return True
    return registration.team_id is not None and is_team_captain(registration.team, actor)
