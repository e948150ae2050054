from typing import Any, Iterable, Optional, Set

from core.errors import PortAllocationFailed

MAX_PORT = 65535


def validate_port(value: Any) -> Optional[int]:
    """Return ``value`` as a port number, or None when it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if not isinstance(value, int):
        return None
    if 1 <= value <= MAX_PORT:
        return value
    return None


def next_available_port(used_ports: Iterable[int], start: int) -> int:
    """Smallest port >= ``start`` not present in ``used_ports``."""
    used = set(used_ports)
    port = start
    while port in used:
        port += 1
    return port


class PortManager:
    """Allocates host ports against the set of ports live workloads hold."""

    def __init__(self, start_port: int = 8000, end_port: int = MAX_PORT):
        self.start_port = start_port
        self.end_port = end_port

    def allocate(self, used_ports: Set[int], exclude: Iterable[int] = ()) -> int:
        """Pick the next free port; ``exclude`` adds ports known to be taken."""
        port = next_available_port(set(used_ports) | set(exclude), self.start_port)
        if port > self.end_port:
            raise PortAllocationFailed(
                f"No free ports available in range {self.start_port}-{self.end_port}"
            )
        return port
