"""
Configuration Management System
===============================

Dataclass-based configuration loaded from YAML. Every section has
defaults, so a missing file or a missing section still yields a usable
configuration.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Any, Dict
import yaml
import logging

from booklore_watch.utils.exceptions import ConfigurationError
from booklore_watch.utils.logging_config import LoggingConfig

logger = logging.getLogger(__name__)


@dataclass
class MonitoringConfig:
    """Filesystem monitoring configuration.

    Attributes:
        debounce_ms: Delay before a delete is processed; a create for the
            same path inside this window cancels both.
        folder_create_debounce_ms: Delay before a new folder is processed,
            giving copies into it time to finish.
        event_drain_timeout_ms: Default timeout for drain waits.
        ignore_patterns: Glob patterns for file names to ignore.
        max_workers: Worker threads processing events.
        max_retries: Retry attempts for a failed event.
        retry_delay: Seconds between retries.
    """
    debounce_ms: int = 500
    folder_create_debounce_ms: int = 2000
    event_drain_timeout_ms: int = 300
    ignore_patterns: List[str] = field(default_factory=lambda: [
        "*.tmp", "*.part", "*.crdownload", "~$*", ".DS_Store", "Thumbs.db", ".*.swp"
    ])
    max_workers: int = 2
    max_retries: int = 3
    retry_delay: float = 2.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitoringConfig":
        """Create MonitoringConfig from dictionary."""
        if not data:
            return cls()
        defaults = cls()
        try:
            return cls(
                debounce_ms=int(data.get("debounce_ms", defaults.debounce_ms)),
                folder_create_debounce_ms=int(
                    data.get("folder_create_debounce_ms", defaults.folder_create_debounce_ms)
                ),
                event_drain_timeout_ms=int(
                    data.get("event_drain_timeout_ms", defaults.event_drain_timeout_ms)
                ),
                ignore_patterns=list(data.get("ignore_patterns", defaults.ignore_patterns)),
                max_workers=int(data.get("max_workers", defaults.max_workers)),
                max_retries=int(data.get("max_retries", defaults.max_retries)),
                retry_delay=float(data.get("retry_delay", defaults.retry_delay)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid monitoring setting: {e}",
                config_key="monitoring",
                cause=e,
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "debounce_ms": self.debounce_ms,
            "folder_create_debounce_ms": self.folder_create_debounce_ms,
            "event_drain_timeout_ms": self.event_drain_timeout_ms,
            "ignore_patterns": self.ignore_patterns,
            "max_workers": self.max_workers,
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
        }


@dataclass
class LibraryConfig:
    """A configured library.

    Attributes:
        id: Unique library id.
        name: Display name.
        paths: Root directories of the library.
        watch: Whether the library is monitored for changes.
    """
    id: int
    name: str = ""
    paths: List[Path] = field(default_factory=list)
    watch: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LibraryConfig":
        """Create LibraryConfig from dictionary.

        Raises:
            ConfigurationError: If the id is missing or not an integer, or
                paths is not a list.
        """
        if not isinstance(data, dict):
            raise ConfigurationError(
                "Library entry must be a mapping",
                config_key="libraries",
                expected_type="mapping",
            )
        if "id" not in data:
            raise ConfigurationError("Library entry is missing an id", config_key="libraries.id")
        try:
            library_id = int(data["id"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Library id must be an integer, got {data['id']!r}",
                config_key="libraries.id",
                expected_type="int",
                cause=e,
            ) from e

        paths = data.get("paths", [])
        if isinstance(paths, str):
            paths = [paths]
        if not isinstance(paths, list):
            raise ConfigurationError(
                f"Paths of library {library_id} must be a list",
                config_key="libraries.paths",
                expected_type="list",
            )

        return cls(
            id=library_id,
            name=str(data.get("name", f"Library {library_id}")),
            paths=[Path(p).expanduser() for p in paths],
            watch=bool(data.get("watch", True)),
        )

    def to_library(self):
        """Convert to the Library model used by the monitoring services."""
        from booklore_watch.monitoring.registration import Library
        return Library(id=self.id, name=self.name, paths=list(self.paths), watch=self.watch)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "paths": [str(p) for p in self.paths],
            "watch": self.watch,
        }


@dataclass
class Config:
    """Main configuration container.

    Aggregates all configuration sections and provides loading from YAML.
    """
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    libraries: List[LibraryConfig] = field(default_factory=list)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file.

        Args:
            config_path: Path to the configuration file. If None, looks for
                        config.yaml in the current directory.

        Returns:
            Config instance with loaded settings.

        Raises:
            ConfigurationError: If the file content is invalid.
            yaml.YAMLError: If config file is not valid YAML.
        """
        if config_path is None:
            config_path = Path("config.yaml")

        if not config_path.exists():
            logger.warning(f"Config file not found at {config_path}, using defaults")
            return cls()

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse config file: {e}")
            raise

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file {config_path} must contain a mapping",
                expected_type="mapping",
            )

        logger.info(f"Loaded configuration from {config_path}")
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        libraries = [LibraryConfig.from_dict(item) for item in data.get("libraries") or []]

        seen = set()
        for library in libraries:
            if library.id in seen:
                raise ConfigurationError(
                    f"Duplicate library id {library.id}",
                    config_key="libraries.id",
                )
            seen.add(library.id)

        return cls(
            monitoring=MonitoringConfig.from_dict(data.get("monitoring", {})),
            libraries=libraries,
            logging=LoggingConfig.from_dict(data.get("logging", {})),
        )

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Path where to save the configuration.
        """
        data = {
            "monitoring": self.monitoring.to_dict(),
            "libraries": [library.to_dict() for library in self.libraries],
            "logging": self.logging.to_dict(),
        }

        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Saved configuration to {config_path}")
