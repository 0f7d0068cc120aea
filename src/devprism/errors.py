"""Exceptions raised by the session & port registry."""


class RegistryError(Exception):
    """Base class for registry errors."""

    pass


class StoreUnavailable(RegistryError):
    """Raised when the registry file cannot be opened, migrated or locked."""

    pass


class DuplicateSession(RegistryError):
    """Raised when an active session already uses the requested id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' already exists")
        self.session_id = session_id


class SessionNotFound(RegistryError):
    """Raised when an operation needs an active session that does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"No active session '{session_id}'")
        self.session_id = session_id


class SessionIdsExhausted(RegistryError):
    """Raised when every session id in 001-999 is taken."""

    pass


class PortAllocationError(RegistryError):
    """Raised when no port can be allocated."""

    pass


class AllocationConflict(PortAllocationError):
    """Raised when a concurrent writer won the same ports twice in a row."""

    pass
