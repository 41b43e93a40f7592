from enum import Enum
from typing import Optional, Callable, Dict, List, Tuple
from dataclasses import dataclass, field
from datetime import datetime

from .errors import InvalidTransition


class TournamentStatus(str, Enum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TournamentFormat(str, Enum):
    SOLO = "SOLO"
    TEAM = "TEAM"


class RegistrationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class Role(str, Enum):
    ADMIN = "ADMIN"
    ORGANIZER = "ORGANIZER"
    PLAYER = "PLAYER"


TERMINAL_STATUSES = frozenset({TournamentStatus.COMPLETED, TournamentStatus.CANCELLED})


@dataclass
class GuardContext:
    """Facts a transition guard may look at, read fresh inside the transaction."""
    start_date: Optional[datetime] = None
    confirmed_count: int = 0
    now: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class Transition:
    from_status: TournamentStatus
    to_status: TournamentStatus
    guard: Optional[Callable[[GuardContext], bool]] = None
    guard_reason: str = ""
    admin_only: bool = False


def start_date_in_future(context: GuardContext) -> bool:
    return context.start_date is not None and context.start_date > context.now


def min_confirmed_guard(min_count: int = 2):
    def guard(context: GuardContext) -> bool:
        return context.confirmed_count >= min_count
    return guard


def _build_table(min_confirmed: int = 2) -> Dict[Tuple[TournamentStatus, TournamentStatus], Transition]:
    S = TournamentStatus
    edges = [
        Transition(S.DRAFT, S.OPEN, start_date_in_future,
                   "start date must be in the future to open registrations"),
        Transition(S.OPEN, S.ONGOING, min_confirmed_guard(min_confirmed),
                   f"at least {min_confirmed} CONFIRMED participants are required"),
        Transition(S.ONGOING, S.COMPLETED, admin_only=True),
    ]
    for status in S:
        if status not in TERMINAL_STATUSES:
            edges.append(Transition(status, S.CANCELLED))
    return {(t.from_status, t.to_status): t for t in edges}


class TournamentStateMachine:
    TRANSITIONS = _build_table()

    def __init__(self, status: TournamentStatus = TournamentStatus.DRAFT, min_confirmed: int = 2):
        self._status = TournamentStatus(status)
        self._transitions = _build_table(min_confirmed)

    @property
    def status(self) -> TournamentStatus:
        return self._status

    @property
    def is_terminal(self) -> bool:
        return self._status in TERMINAL_STATUSES

    @property
    def allowed_targets(self) -> List[TournamentStatus]:
        return [to for (frm, to) in self._transitions if frm == self._status]

    def can_transition(self, to_status: TournamentStatus) -> bool:
        return (self._status, TournamentStatus(to_status)) in self._transitions

    @classmethod
    def requires_admin(cls, to_status: TournamentStatus) -> bool:
        """True when every edge into ``to_status`` is reserved to admins."""
        edges = [t for t in cls.TRANSITIONS.values() if t.to_status == to_status]
        return bool(edges) and all(t.admin_only for t in edges)

    def transition(self, to_status: TournamentStatus, context: GuardContext = None) -> TournamentStatus:
        to_status = TournamentStatus(to_status)
        edge = self._transitions.get((self._status, to_status))

        if edge is None:
            raise InvalidTransition(self._status.value, to_status.value)

        if edge.guard is not None:
            if not edge.guard(context or GuardContext()):
                raise InvalidTransition(
                    self._status.value,
                    to_status.value,
                    f"Cannot transition from {self._status.value} to {to_status.value}: {edge.guard_reason}"
                )

        self._status = to_status
        return self._status
