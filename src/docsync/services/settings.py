"""Settings dataclass and JSON persistence."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

__all__ = [
    "Settings",
    "SettingsStore",
    "VIEW_MODE_CHOICES",
    "EXTERNAL_CHANGE_POLICY_CHOICES",
    "docsync_home",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_VERSION = 1
_HOME_ENV = "DOCSYNC_HOME"
_ENV_OVERRIDES: Mapping[str, str] = {
    "DOCSYNC_VIEW_MODE": "view_mode",
    "DOCSYNC_EXTERNAL_CHANGE_POLICY": "external_change_policy",
    "DOCSYNC_DRAFT_STORE_PATH": "draft_store_path",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "DOCSYNC_AUTOSAVE": "autosave_enabled",
    "DOCSYNC_DEBUG_LOGGING": "debug_logging",
    "DOCSYNC_LOG_TO_FILE": "log_to_file",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "DOCSYNC_AUTOSAVE_DELAY_MS": "autosave_delay_ms",
    "DOCSYNC_DRAFT_DELAY_MS": "draft_delay_ms",
    "DOCSYNC_SETTLE_WINDOW_MS": "settle_window_ms",
}
_TRUE_VALUES = {"1", "true", "yes", "on"}
VIEW_MODE_CHOICES: tuple[str, ...] = ("side-by-side", "editor-only", "preview-only")
EXTERNAL_CHANGE_POLICY_CHOICES: tuple[str, ...] = ("reload", "confirm", "reload-when-clean")


def docsync_home() -> Path:
    """Directory holding settings, drafts and logs."""

    override = os.environ.get(_HOME_ENV)
    return Path(override).expanduser() if override else Path.home() / ".docsync"


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    autosave_enabled: bool = True
    autosave_delay_ms: int = 1000
    draft_delay_ms: int = 500
    settle_window_ms: int = 1000
    view_mode: str = "editor-only"
    external_change_policy: str = "reload-when-clean"
    draft_store_path: str | None = None
    debug_logging: bool = False
    log_to_file: bool = False

    @property
    def autosave_delay(self) -> float:
        return max(0, self.autosave_delay_ms) / 1000.0

    @property
    def draft_delay(self) -> float:
        return max(0, self.draft_delay_ms) / 1000.0

    @property
    def settle_window(self) -> float:
        return max(0, self.settle_window_ms) / 1000.0


class SettingsStore:
    """Persistence adapter for :class:`Settings`.

    Instances are callable, so a store can be handed to the engine directly as
    its settings provider; every call re-reads the file.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or docsync_home() / "settings.json"

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def __call__(self) -> Settings:
        return self.load()

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying runtime and environment overrides."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if payload.get("version") != _SETTINGS_VERSION:
                LOGGER.debug("Settings file %s has version %s", self._path, payload.get("version"))

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="runtime")

        settings = self._apply_env_overrides(settings)
        return _normalize_choices(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings with an atomic temp-file swap."""

        payload: Dict[str, Any] = asdict(settings)
        payload["version"] = _SETTINGS_VERSION
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(data, Mapping):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return dict(data)

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str,
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered = {
            key: value for key, value in overrides.items() if key in allowed and value is not None
        }
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)}
    return {key: value for key, value in payload.items() if key in allowed}


def _normalize_choices(settings: Settings) -> Settings:
    updates: Dict[str, Any] = {}
    view_mode = str(settings.view_mode).strip().lower()
    if view_mode not in VIEW_MODE_CHOICES:
        LOGGER.warning("Unknown view_mode %r; using editor-only", settings.view_mode)
        view_mode = "editor-only"
    if view_mode != settings.view_mode:
        updates["view_mode"] = view_mode
    policy = str(settings.external_change_policy).strip().lower()
    if policy not in EXTERNAL_CHANGE_POLICY_CHOICES:
        LOGGER.warning(
            "Unknown external_change_policy %r; using reload-when-clean",
            settings.external_change_policy,
        )
        policy = "reload-when-clean"
    if policy != settings.external_change_policy:
        updates["external_change_policy"] = policy
    return replace(settings, **updates) if updates else settings
