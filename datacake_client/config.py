from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import sys
from urllib.parse import urlparse


class ConfigurationError(ValueError):
    pass


VALID_PLATFORMS = ("android", "ios", "web", "desktop")


@dataclass(frozen=True)
class AppSettings:
    api_url: str
    api_port: int
    api_root_path: str
    platform: str
    is_device: bool
    dev_server_url: str
    debugger_host: str
    host_uri: str
    expo_manifest_path: str
    timeout_seconds: float
    probe_timeout_seconds: float
    token_dir: str
    log_level: str

    @staticmethod
    def from_env() -> "AppSettings":
        _load_dotenv_if_present()

        api_url = os.getenv("DATACAKE_API_URL", "").strip()
        api_port = _read_int("DATACAKE_API_PORT", "8000")
        api_root_path = os.getenv("DATACAKE_API_ROOT_PATH", "/api").strip().rstrip("/")

        platform = os.getenv("DATACAKE_PLATFORM", "desktop").strip().lower()
        is_device = _read_bool("DATACAKE_IS_DEVICE", "false")

        dev_server_url = os.getenv("DATACAKE_DEV_SERVER_URL", "").strip()
        debugger_host = os.getenv("DATACAKE_DEBUGGER_HOST", "").strip()
        host_uri = os.getenv("DATACAKE_HOST_URI", "").strip()
        expo_manifest_path = os.getenv("DATACAKE_EXPO_MANIFEST", "").strip()

        timeout_seconds = _read_float("DATACAKE_TIMEOUT_SECONDS", "10")
        probe_timeout_seconds = _read_float("DATACAKE_PROBE_TIMEOUT_SECONDS", "2")

        default_token_dir = os.path.join(
            os.getenv("LOCALAPPDATA", os.getcwd()),
            "DatacakeClient",
        )
        token_dir = os.getenv("DATACAKE_TOKEN_DIR", default_token_dir).strip()
        log_level = os.getenv("DATACAKE_LOG_LEVEL", "INFO").strip().upper()

        settings = AppSettings(
            api_url=api_url,
            api_port=api_port,
            api_root_path=api_root_path,
            platform=platform,
            is_device=is_device,
            dev_server_url=dev_server_url,
            debugger_host=debugger_host,
            host_uri=host_uri,
            expo_manifest_path=expo_manifest_path,
            timeout_seconds=timeout_seconds,
            probe_timeout_seconds=probe_timeout_seconds,
            token_dir=token_dir,
            log_level=log_level,
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        problems = []

        if self.api_url:
            parsed = urlparse(self.api_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                problems.append("DATACAKE_API_URL must be an absolute http(s) URL")

        if not 0 < self.api_port < 65536:
            problems.append("DATACAKE_API_PORT must be between 1 and 65535")

        if not self.api_root_path.startswith("/"):
            problems.append("DATACAKE_API_ROOT_PATH must start with '/'")

        if self.platform not in VALID_PLATFORMS:
            problems.append("DATACAKE_PLATFORM must be one of: " + ", ".join(VALID_PLATFORMS))

        if self.timeout_seconds <= 0:
            problems.append("DATACAKE_TIMEOUT_SECONDS must be greater than 0")

        if self.probe_timeout_seconds <= 0:
            problems.append("DATACAKE_PROBE_TIMEOUT_SECONDS must be greater than 0")

        if not self.token_dir:
            problems.append("DATACAKE_TOKEN_DIR must not be empty")

        if problems:
            raise ConfigurationError("Invalid settings: " + "; ".join(problems))


def _read_int(name: str, default: str) -> int:
    raw = os.getenv(name, default).strip()
    try:
        return int(raw)
    except ValueError as error:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from error


def _read_float(name: str, default: str) -> float:
    raw = os.getenv(name, default).strip()
    try:
        return float(raw)
    except ValueError as error:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from error


def _read_bool(name: str, default: str) -> bool:
    raw = os.getenv(name, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off", ""):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _load_dotenv_if_present(file_name: str = ".env") -> None:
    for candidate in _candidate_env_files(file_name):
        _load_env_file(candidate)


def _candidate_env_files(file_name: str) -> list[Path]:
    candidates: list[Path] = []

    explicit = os.getenv("DATACAKE_ENV_FILE", "").strip()
    if explicit:
        candidates.append(Path(explicit).expanduser())

    candidates.append(Path.cwd() / file_name)

    if getattr(sys, "frozen", False):
        candidates.append(Path(sys.executable).resolve().parent / file_name)
    else:
        candidates.append(Path(__file__).resolve().parent.parent / file_name)

    unique_candidates: list[Path] = []
    seen: set[str] = set()
    for path in candidates:
        normalized = str(path.resolve()) if path.exists() else str(path)
        if normalized in seen:
            continue
        seen.add(normalized)
        unique_candidates.append(path)
    return unique_candidates


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return

    try:
        with path.open("r", encoding="utf-8") as env_file:
            for raw_line in env_file:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue

                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip().strip('"').strip("'")

                if key and key not in os.environ:
                    os.environ[key] = value
    except OSError:
        return
