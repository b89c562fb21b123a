from __future__ import annotations

from concurrent.futures import Future
from dataclasses import replace
import logging
import re
import threading
from typing import Callable
from urllib.parse import urlparse, urlsplit

import requests

from datacake_client.config import AppSettings, ConfigurationError
from datacake_client.hints import EnvironmentHintsProvider, StaticHintsProvider
from datacake_client.models import BASE_URL_SOURCES, BaseUrlMeta

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1"})
ANDROID_EMULATOR_HOST = "10.0.2.2"
# Relay domains of the dev tooling; never reachable by a same-network probe.
TUNNEL_DOMAINS = ("exp.host", "exp.direct", "expo.dev")

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9.+-]*://", re.IGNORECASE)
_LEADING_HOST_RE = re.compile(r"^([^/?#:]+)")

ProbeFunction = Callable[[str, float], bool]


def strip_trailing_slash(value: str) -> str:
    return value.rstrip("/")


def is_tunnel_host(host: str | None) -> bool:
    if not host:
        return False
    normalized = host.lower()
    return any(normalized == domain or normalized.endswith(f".{domain}") for domain in TUNNEL_DOMAINS)


def sanitize_host(host: str | None, platform: str, is_device: bool) -> str | None:
    if not host:
        return None
    clean = host.strip()
    if not clean:
        return None
    if clean.lower() in LOOPBACK_HOSTS:
        # Loopback on a physical device is the device itself, not the dev machine.
        if is_device:
            return None
        return ANDROID_EMULATOR_HOST if platform == "android" else "localhost"
    return clean


def parse_host_candidate(candidate: str | None, platform: str, is_device: bool) -> str | None:
    if not candidate:
        return None
    trimmed = str(candidate).strip()
    if not trimmed:
        return None

    without_scheme = _SCHEME_RE.sub("", trimmed)
    normalized = f"http:{without_scheme}" if without_scheme.startswith("//") else f"http://{without_scheme}"

    try:
        host = urlsplit(normalized).hostname
    except ValueError:
        host = None
    if not host:
        match = _LEADING_HOST_RE.match(without_scheme)
        host = match.group(1) if match else None

    host = sanitize_host(host, platform, is_device)
    if host is None or is_tunnel_host(host):
        return None
    return host


def probe_health(url: str, timeout_seconds: float) -> bool:
    try:
        response = requests.get(url, timeout=timeout_seconds)
    except requests.RequestException as error:
        logger.debug("Health probe %s failed: %s", url, error)
        return False
    return response.ok


class BaseUrlResolver:
    def __init__(
        self,
        hints: EnvironmentHintsProvider | None = None,
        *,
        override: str = "",
        platform: str = "desktop",
        is_device: bool = False,
        api_port: int = 8000,
        api_root_path: str = "/api",
        probe_timeout_seconds: float = 2.0,
        probe: ProbeFunction | None = None,
    ):
        self._hints = hints or StaticHintsProvider()
        self._platform = platform
        self._is_device = is_device
        self._api_port = api_port
        self._api_root_path = strip_trailing_slash(api_root_path)
        self._probe_timeout_seconds = probe_timeout_seconds
        self._probe = probe or probe_health
        self._lock = threading.Lock()
        self._probe_future: Future[BaseUrlMeta] | None = None
        self._meta = self._resolve_static(override)
        self._log_resolution()

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        hints: EnvironmentHintsProvider,
        probe: ProbeFunction | None = None,
    ) -> "BaseUrlResolver":
        return cls(
            hints,
            override=settings.api_url,
            platform=settings.platform,
            is_device=settings.is_device,
            api_port=settings.api_port,
            api_root_path=settings.api_root_path,
            probe_timeout_seconds=settings.probe_timeout_seconds,
            probe=probe,
        )

    @property
    def meta(self) -> BaseUrlMeta:
        return self._meta

    @property
    def base_url(self) -> str:
        return self._meta.resolved_base_url

    def build_base_url(self, host: str) -> str:
        return f"http://{host}:{self._api_port}{self._api_root_path}"

    def host_candidates(self) -> list[str]:
        hosts: list[str] = []
        for candidate in self._hints.host_candidates():
            host = parse_host_candidate(candidate, self._platform, self._is_device)
            if host and host not in hosts:
                hosts.append(host)
        return hosts

    def ensure_resolved(self) -> BaseUrlMeta:
        with self._lock:
            if self._meta.source != "fallback":
                return self._meta
            probe = self._probe_future
            is_owner = probe is None
            if probe is None:
                probe = self._probe_future = Future()

        if not is_owner:
            return probe.result()

        try:
            self._run_probe()
        finally:
            with self._lock:
                self._probe_future = None
                meta = self._meta
            probe.set_result(meta)
        return meta

    def set_base_url(self, url: str, source: str = "manual") -> BaseUrlMeta:
        if source not in BASE_URL_SOURCES:
            raise ValueError(f"Unknown base URL source: {source}")
        normalized = strip_trailing_slash(url.strip())
        parsed = urlparse(normalized)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"Base URL must be an absolute http(s) URL, got {url!r}")

        with self._lock:
            auto_detected = normalized if source == "auto-probe" else self._meta.auto_detected_base_url
            self._meta = replace(
                self._meta,
                resolved_base_url=normalized,
                auto_detected_base_url=auto_detected,
                source=source,
            )
            meta = self._meta
        logger.info("API base URL set to %s (source: %s)", meta.resolved_base_url, meta.source)
        return meta

    def _resolve_static(self, override: str) -> BaseUrlMeta:
        env_base_url = strip_trailing_slash(override.strip()) if override else ""
        auto_detected = self._infer_base_url()
        fallback = self.build_base_url("localhost")

        if env_base_url:
            resolved, source = env_base_url, "env"
        elif auto_detected:
            resolved, source = auto_detected, "auto"
        else:
            resolved, source = fallback, "fallback"

        return BaseUrlMeta(
            env_base_url=env_base_url or None,
            auto_detected_base_url=auto_detected,
            resolved_base_url=strip_trailing_slash(resolved),
            source=source,
        )

    def _infer_base_url(self) -> str | None:
        if self._platform == "web":
            return None
        hosts = self.host_candidates()
        if not hosts:
            return None
        return self.build_base_url(hosts[0])

    def _run_probe(self) -> None:
        try:
            reachable = self._probe_for_reachable_base_url()
        except Exception as error:
            logger.warning("API base URL auto-probe failed: %s", error)
            return

        if reachable:
            self.set_base_url(reachable, source="auto-probe")
            return

        logger.warning(
            "Could not reach the backend automatically. Set DATACAKE_API_URL or configure the address manually."
        )

    def _probe_for_reachable_base_url(self) -> str | None:
        for host in self.host_candidates():
            base_url = self.build_base_url(host)
            if self._probe(f"{base_url}/health/", self._probe_timeout_seconds):
                return base_url
        return None

    def _log_resolution(self) -> None:
        meta = self._meta
        if meta.source == "auto":
            logger.info(
                "API base URL inferred as %s. Set DATACAKE_API_URL to override.",
                meta.resolved_base_url,
            )
        elif meta.source == "fallback":
            logger.warning(
                "Could not infer the backend address, falling back to %s. Set DATACAKE_API_URL to override.",
                meta.resolved_base_url,
            )
        else:
            logger.info("API base URL set to %s (source: %s)", meta.resolved_base_url, meta.source)
