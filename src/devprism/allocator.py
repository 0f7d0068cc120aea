"""Port allocation logic for dev-prism."""

import sqlite3
from collections.abc import Sequence

from .config import PortRange
from .console import debug
from .db import Database, PortAllocation
from .errors import AllocationConflict, PortAllocationError
from .system import SystemScanner

# OS probes per service before giving up on finding a port outside the exclusion set
MAX_PROBES = 100


class PortAllocator:
    """Allocate ports with machine-wide uniqueness guarantee.

    Allocation is optimistic: candidate ports are probed against the OS and
    the registry's current state, then committed in one transaction. If a
    concurrent process committed one of the same ports or services in
    between, the whole probe-and-commit runs once more before giving up.
    """

    def __init__(self, db: Database, port_range: PortRange | None = None) -> None:
        """Initialize allocator.

        Args:
            db: Database instance
            port_range: Scan this range instead of using OS-assigned ports
        """
        self.db = db
        self.port_range = port_range
        self.system = SystemScanner()

    def allocate(self, session_id: str, services: Sequence[str]) -> list[PortAllocation]:
        """Allocate one port per service for an active session.

        Services the session already holds keep their port.

        Args:
            session_id: Owning session
            services: Service names, e.g. ["postgres", "app"]

        Returns:
            Allocations in the same order as services

        Raises:
            ValueError: If a service name is repeated
            SessionNotFound: If session_id is not an active session
            PortAllocationError: If no acceptable port can be found
            AllocationConflict: If the commit lost a race twice
        """
        services = list(services)
        if not services:
            return []

        duplicates = sorted({s for s in services if services.count(s) > 1})
        if duplicates:
            raise ValueError(f"Duplicate service names: {', '.join(duplicates)}")

        try:
            return self._allocate_once(session_id, services)
        except sqlite3.IntegrityError as e:
            debug(f"allocation for {session_id} lost a race ({e}), retrying")

        try:
            return self._allocate_once(session_id, services)
        except sqlite3.IntegrityError as e:
            raise AllocationConflict(
                f"Could not allocate ports for session '{session_id}': "
                f"another process took them twice ({e})"
            ) from e

    def _allocate_once(self, session_id: str, services: list[str]) -> list[PortAllocation]:
        """One probe-and-commit pass."""
        held = {a.service: a.port for a in self.db.get_port_allocations(session_id)}
        missing = [service for service in services if service not in held]

        if missing:
            unavailable = self._get_unavailable_ports()
            candidates: list[tuple[str, int]] = []
            for service in missing:
                port = self._find_free_port(service, unavailable)
                unavailable.add(port)
                candidates.append((service, port))
                debug(f"candidate {service} -> {port}")

            self.db.create_allocations(session_id, candidates)
            held.update(candidates)

        return [
            PortAllocation(session_id=session_id, service=service, port=held[service])
            for service in services
        ]

    def _get_unavailable_ports(self) -> set[int]:
        """Get set of all unavailable ports.

        Combines:
        - Ports allocated to active sessions
        - Reserved ports

        Returns:
            Set of unavailable port numbers
        """
        return self.db.allocated_ports() | self.db.reserved_ports()

    def _find_free_port(self, service: str, unavailable: set[int]) -> int:
        if self.port_range is not None:
            for port in range(self.port_range.start, self.port_range.end + 1):
                if self._is_port_available(port, unavailable):
                    return port
            raise PortAllocationError(
                f"No available port for service '{service}' "
                f"(tried range {self.port_range.start}-{self.port_range.end})"
            )

        for _ in range(MAX_PROBES):
            port = self.system.probe_free_port()
            if port not in unavailable:
                return port
        raise PortAllocationError(
            f"No available port for service '{service}' after {MAX_PROBES} probes"
        )

    def _is_port_available(self, port: int, unavailable: set[int]) -> bool:
        """Check if a port is available.

        Args:
            port: Port number to check
            unavailable: Set of known unavailable ports

        Returns:
            True if port is available, False otherwise
        """
        if port in unavailable:
            return False
        return self.system.is_port_bindable(port)
