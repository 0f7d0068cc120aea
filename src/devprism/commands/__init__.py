"""Command modules for dev-prism CLI."""

from .allocate import allocate
from .destroy import destroy, remove
from .info import info
from .list import list_cmd
from .prune import prune
from .register import register
from .reserve import reservations, reserve, unreserve

__all__ = [
    "allocate",
    "destroy",
    "info",
    "list_cmd",
    "prune",
    "register",
    "remove",
    "reservations",
    "reserve",
    "unreserve",
]
