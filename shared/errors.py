class LobbyError(Exception):
    """Base class for every business-rule failure raised by the lobby core.

    The command layer maps ``status_code`` to its transport; the core
    itself never looks at it.
    """
    kind = "error"
    status_code = 400

    def __init__(self, message: str = None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return self.kind.replace("_", " ").capitalize()

    def to_dict(self) -> dict:
        return {
            'error': self.message,
            'kind': self.kind,
        }


class NotFound(LobbyError):
    kind = "not_found"
    status_code = 404


class InvalidState(LobbyError):
    kind = "invalid_state"
    status_code = 400


class InvalidTransition(LobbyError):
    kind = "invalid_transition"
    status_code = 400

    def __init__(self, from_status: str, to_status: str, reason: str = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(reason or f"Cannot transition from {from_status} to {to_status}")


class FormatMismatch(LobbyError):
    kind = "format_mismatch"
    status_code = 400


class Duplicate(LobbyError):
    kind = "duplicate"
    status_code = 409


class CapacityExceeded(LobbyError):
    kind = "capacity_exceeded"
    status_code = 409


class Forbidden(LobbyError):
    kind = "forbidden"
    status_code = 403


class ValidationError(LobbyError):
    kind = "validation_error"
    status_code = 400
