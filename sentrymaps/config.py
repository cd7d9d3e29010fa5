"""Project routing configuration and the settings store."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .utils.paths import get_settings_path

logger = logging.getLogger(__name__)

DEFAULT_SENTRY_URL = "https://sentry.io"
DEFAULT_CACHE_SIZE = 200


def get_sentry_url() -> str:
    """Canonical public Sentry URL (SENTRY_URL env overrides)."""
    return os.environ.get("SENTRY_URL", DEFAULT_SENTRY_URL).rstrip("/")


class ProjectConfig:
    """Routes pages matching url_pattern to one Sentry project."""

    def __init__(self, project: str, organization: str, url_pattern: str,
                 project_name: Optional[str] = None,
                 organization_name: Optional[str] = None):
        if not url_pattern:
            raise ValueError("url_pattern must not be empty")
        if not project or not organization:
            raise ValueError("project and organization slugs are required")

        self.project = project
        self.organization = organization
        self.url_pattern = url_pattern
        self.project_name = project_name or project
        self.organization_name = organization_name or organization

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectConfig":
        """Build from the stored camelCase shape (snake_case also accepted)."""
        if not isinstance(data, dict):
            raise ValueError(f"Project config must be an object, got {type(data).__name__}")

        return cls(
            project=data.get("project", ""),
            organization=data.get("organization", ""),
            url_pattern=data.get("urlPattern", data.get("url_pattern", "")),
            project_name=data.get("projectName", data.get("project_name")),
            organization_name=data.get("organizationName", data.get("organization_name")),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "project": self.project,
            "projectName": self.project_name,
            "organization": self.organization,
            "organizationName": self.organization_name,
            "urlPattern": self.url_pattern,
        }

    @property
    def display_name(self) -> str:
        return f"{self.organization_name}/{self.project_name}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProjectConfig):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash(tuple(self.to_dict().values()))

    def __repr__(self) -> str:
        return (f"ProjectConfig(organization={self.organization!r}, "
                f"project={self.project!r}, url_pattern={self.url_pattern!r})")


class Settings:
    """Immutable snapshot of the auth token and project configs."""

    def __init__(self, auth_token: Optional[str] = None,
                 project_configs: Iterable[ProjectConfig] = ()):
        self._auth_token = auth_token or None
        self._project_configs: Tuple[ProjectConfig, ...] = tuple(project_configs)

    @property
    def auth_token(self) -> Optional[str]:
        return self._auth_token

    @property
    def project_configs(self) -> Tuple[ProjectConfig, ...]:
        return self._project_configs

    @property
    def has_token(self) -> bool:
        return self._auth_token is not None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Settings):
            return NotImplemented
        return (self._auth_token == other._auth_token
                and self._project_configs == other._project_configs)

    def __repr__(self) -> str:
        token_state = "present" if self.has_token else "missing"
        return f"Settings(token={token_state}, project_configs={len(self._project_configs)})"


def parse_project_configs(raw: Any) -> List[ProjectConfig]:
    """Parse stored project configs, skipping invalid entries."""
    if not raw:
        return []
    if not isinstance(raw, list):
        logger.warning(f"Ignoring projectConfigs: expected a list, got {type(raw).__name__}")
        return []

    configs = []
    for index, entry in enumerate(raw):
        try:
            configs.append(ProjectConfig.from_dict(entry))
        except ValueError as e:
            logger.warning(f"Skipping invalid project config #{index}: {e}")
    return configs


class SettingsStore:
    """JSON-file backed settings with a push-style change stream.

    The file holds the same keys the browser extension keeps in sync
    storage: ``sentryAuthToken`` and ``projectConfigs``. Every change
    replaces the whole snapshot; subscribers receive the new snapshot.
    """

    TOKEN_ENV = "SENTRY_AUTH_TOKEN"

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_settings_path()
        self._settings = Settings()
        self._subscribers: List[Callable[[Settings], None]] = []

    def snapshot(self) -> Settings:
        """Current settings snapshot (never mutated in place)."""
        return self._settings

    def load(self) -> Settings:
        """Read the settings file and replace the snapshot."""
        self._replace(self._read_file())
        logger.debug(
            f"Config loaded: {'Auth token present' if self._settings.has_token else 'No auth token'}, "
            f"project configs: {len(self._settings.project_configs)}"
        )
        return self._settings

    def refresh(self) -> Settings:
        """Re-read the file; subscribers are notified only on change."""
        return self._replace(self._read_file())

    def update(self, auth_token: Any = ..., project_configs: Any = ...) -> Settings:
        """Persist new values and notify subscribers.

        Args:
            auth_token: new token, or None to remove it; omitted keeps it
            project_configs: full replacement list; omitted keeps it
        """
        current = self._read_raw()
        if auth_token is not ...:
            if auth_token:
                current["sentryAuthToken"] = auth_token
            else:
                current.pop("sentryAuthToken", None)
        if project_configs is not ...:
            current["projectConfigs"] = [
                c.to_dict() if isinstance(c, ProjectConfig) else c
                for c in (project_configs or [])
            ]

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(current, f, indent=2, ensure_ascii=False)

        return self._replace(self._settings_from_raw(current))

    def subscribe(self, callback: Callable[[Settings], None]) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def _replace(self, settings: Settings) -> Settings:
        if settings == self._settings:
            return self._settings

        previous = self._settings
        self._settings = settings
        if previous.has_token != settings.has_token:
            logger.info(f"Auth token updated: {'Token present' if settings.has_token else 'Token removed'}")
        if previous.project_configs != settings.project_configs:
            logger.info(f"Project configs updated: {len(settings.project_configs)}")

        for callback in list(self._subscribers):
            try:
                callback(settings)
            except Exception as e:
                logger.warning(f"Error in settings subscriber: {e}")
        return settings

    def _read_raw(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read settings file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Settings file {self.path} does not contain an object")
            return {}
        return data

    def _settings_from_raw(self, data: Dict[str, Any]) -> Settings:
        token = os.environ.get(self.TOKEN_ENV) or data.get("sentryAuthToken")
        if token is not None and not isinstance(token, str):
            logger.warning("Ignoring non-string sentryAuthToken")
            token = None
        return Settings(token, parse_project_configs(data.get("projectConfigs")))

    def _read_file(self) -> Settings:
        return self._settings_from_raw(self._read_raw())
