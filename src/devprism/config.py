"""Configuration management for dev-prism."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs
import yaml

DEFAULT_BUSY_TIMEOUT = 5.0

PROJECT_CONFIG_FILES = ("prism.config.yaml", "prism.config.yml")


@dataclass
class PortRange:
    """Inclusive port range used instead of OS-assigned ports."""

    start: int
    end: int


@dataclass
class ProjectConfig:
    """Per-project settings read from prism.config.yaml."""

    project_name: str | None = None
    sessions_dir: str = "../sessions"
    ports: list[str] = field(default_factory=list)

    def sessions_path(self, project_root: Path) -> Path:
        """Resolve sessions_dir relative to the project root."""
        return (project_root / self.sessions_dir).resolve()


def get_data_dir() -> Path:
    """Get the data directory for dev-prism.

    Returns:
        Path to data directory
    """
    data_dir = Path(platformdirs.user_data_dir("dev-prism", "dev-prism"))
    data_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
    return data_dir


def get_db_path() -> Path:
    """Get the registry database path.

    ``DEV_PRISM_DB`` overrides the default location.

    Returns:
        Path to database file
    """
    override = os.getenv("DEV_PRISM_DB")
    if override:
        return Path(override).expanduser()
    return get_data_dir() / "sessions.db"


def get_busy_timeout() -> float:
    """Seconds a writer waits for the database lock before failing."""
    value = os.getenv("DEV_PRISM_BUSY_TIMEOUT")
    if not value:
        return DEFAULT_BUSY_TIMEOUT
    try:
        timeout = float(value)
    except ValueError:
        raise ValueError(f"DEV_PRISM_BUSY_TIMEOUT must be a number, got {value!r}")
    if timeout < 0:
        raise ValueError("DEV_PRISM_BUSY_TIMEOUT must not be negative")
    return timeout


def parse_port_range(value: str) -> PortRange:
    """Parse a ``start-end`` string.

    Args:
        value: Range such as ``"20000-29999"``

    Returns:
        PortRange object

    Raises:
        ValueError: If the range is malformed or out of bounds
    """
    parts = value.split("-")
    if len(parts) != 2:
        raise ValueError(f"Port range should be start-end, got {value!r}")
    try:
        start = int(parts[0])
        end = int(parts[1])
    except ValueError:
        raise ValueError(f"Ports must be integers, got {value!r}")
    if not 1 <= start < end <= 65535:
        raise ValueError(f"Invalid port range {start}-{end}")
    return PortRange(start=start, end=end)


def get_port_range() -> PortRange | None:
    """Get the allocation range from ``DEV_PRISM_PORT_RANGE``.

    Returns:
        PortRange, or None to let the OS pick ephemeral ports
    """
    value = os.getenv("DEV_PRISM_PORT_RANGE")
    if not value:
        return None
    return parse_port_range(value)


def load_project_config(project_root: Path) -> ProjectConfig:
    """Load prism.config.yaml from a project root.

    Args:
        project_root: Project directory

    Returns:
        ProjectConfig (defaults if no config file exists)

    Raises:
        ValueError: If the file is not valid YAML or has the wrong shape
    """
    for filename in PROJECT_CONFIG_FILES:
        config_path = project_root / filename
        if config_path.exists():
            break
    else:
        return ProjectConfig()

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    if data is None:
        return ProjectConfig()
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping")

    ports = data.get("ports") or []
    if not isinstance(ports, list) or not all(isinstance(p, str) for p in ports):
        raise ValueError(f"'ports' in {config_path} must be a list of service names")

    config = ProjectConfig(project_name=data.get("project_name"), ports=ports)
    if data.get("sessions_dir"):
        config.sessions_dir = str(data["sessions_dir"])
    return config
