class SessionError(Exception):
    """Base class for failures reported by the session core."""

    code = "internal"


class ValidationError(SessionError):
    """Missing, empty or oversized room id or username. Raised before any mutation."""

    code = "validation"


class ConflictError(SessionError):
    """Username already held by another connection in the target room."""

    code = "conflict"


class InternalFailure(SessionError):
    code = "internal"


class TransportError(SessionError):
    """Delivery to one connection failed (closed, queue full or send error)."""

    code = "transport"

    def __init__(self, connection_id: str, message: str):
        super().__init__(f"{connection_id}: {message}")
        self.connection_id = connection_id
