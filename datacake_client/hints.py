from __future__ import annotations

from collections.abc import Mapping, Sequence
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from datacake_client.config import AppSettings

logger = logging.getLogger(__name__)


class EnvironmentHintsProvider(Protocol):
    def host_candidates(self) -> list[str]:
        """Return raw host hints, most trustworthy first."""
        ...


class StaticHintsProvider:
    def __init__(self, candidates: Sequence[str | None] = ()):
        self._candidates = [str(candidate) for candidate in candidates if candidate]

    def host_candidates(self) -> list[str]:
        return list(self._candidates)


class SettingsHintsProvider:
    """Hints passed through ``DATACAKE_*`` variables by the dev tooling."""

    def __init__(self, settings: AppSettings):
        self._settings = settings

    def host_candidates(self) -> list[str]:
        raw = [
            self._settings.dev_server_url,
            self._settings.debugger_host,
            self._settings.host_uri,
        ]
        return [value for value in raw if value]


# Nested manifest fields that may carry the dev server address, in lookup order.
EXPO_MANIFEST_FIELDS: tuple[tuple[str, ...], ...] = (
    ("expoGoConfig", "debuggerHost"),
    ("expoGoConfig", "hostUri"),
    ("expoConfig", "hostUri"),
    ("manifest", "debuggerHost"),
    ("manifest", "hostUri"),
    ("manifest2", "extra", "expoGo", "developer", "host"),
)


class ExpoManifestHintsProvider:
    def __init__(self, manifest: Mapping[str, Any]):
        self._manifest = manifest

    @classmethod
    def from_file(cls, path: str) -> "ExpoManifestHintsProvider":
        try:
            with Path(path).expanduser().open("r", encoding="utf-8") as manifest_file:
                manifest = json.load(manifest_file)
        except (OSError, ValueError) as error:
            logger.warning("Could not read manifest hints from %s: %s", path, error)
            manifest = {}
        if not isinstance(manifest, dict):
            manifest = {}
        return cls(manifest)

    def host_candidates(self) -> list[str]:
        candidates: list[str] = []
        for field_path in EXPO_MANIFEST_FIELDS:
            value = _lookup(self._manifest, field_path)
            if isinstance(value, str) and value.strip():
                candidates.append(value.strip())
        return candidates


class ChainedHintsProvider:
    def __init__(self, providers: Sequence[EnvironmentHintsProvider]):
        self._providers = list(providers)

    def host_candidates(self) -> list[str]:
        candidates: list[str] = []
        for provider in self._providers:
            candidates.extend(provider.host_candidates())
        return candidates


def build_hints_provider(settings: AppSettings) -> EnvironmentHintsProvider:
    providers: list[EnvironmentHintsProvider] = [SettingsHintsProvider(settings)]
    if settings.expo_manifest_path:
        providers.append(ExpoManifestHintsProvider.from_file(settings.expo_manifest_path))
    return ChainedHintsProvider(providers)


def _lookup(data: Mapping[str, Any], field_path: tuple[str, ...]) -> Any:
    current: Any = data
    for key in field_path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current
