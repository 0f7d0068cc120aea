"""dev-prism - Session & port registry for parallel development environments."""

__version__ = "0.1.0"

from .allocator import PortAllocator
from .config import PortRange, ProjectConfig, load_project_config
from .context import ProjectContext, default_branch_name, get_project_context, next_session_id
from .db import Database, PortAllocation, Reservation, SessionRow, open_database
from .errors import (
    AllocationConflict,
    DuplicateSession,
    PortAllocationError,
    RegistryError,
    SessionIdsExhausted,
    SessionNotFound,
    StoreUnavailable,
)
from .pruner import Pruner, PruneResult

__all__ = [
    "__version__",
    "AllocationConflict",
    "Database",
    "DuplicateSession",
    "PortAllocation",
    "PortAllocationError",
    "PortAllocator",
    "PortRange",
    "ProjectConfig",
    "ProjectContext",
    "PruneResult",
    "Pruner",
    "RegistryError",
    "Reservation",
    "SessionIdsExhausted",
    "SessionNotFound",
    "SessionRow",
    "StoreUnavailable",
    "default_branch_name",
    "get_project_context",
    "load_project_config",
    "next_session_id",
    "open_database",
]
