"""Configuration: reads all settings from environment variables."""

import os
from pathlib import Path


def _env_secret(name: str, default: str = "") -> str:
    """Resolve a secret from the environment, falling back to a *_FILE path."""
    value = os.getenv(name)
    if value:
        return value.strip()

    file_path = (os.getenv(f"{name}_FILE") or "").strip()
    if not file_path:
        return default
    try:
        secret = Path(file_path).read_text(encoding="utf-8").strip()
    except OSError:
        return default
    return secret or default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_csv(name: str) -> list[str]:
    raw = os.getenv(name, "")
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


HOME_DIR: str = os.getenv("OPENCLAW_HOME", os.getenv("HOME", str(Path.home())))
EXTRA_BIN_PATH: str = os.getenv("OPENCLAW_EXTRA_PATH", str(Path(HOME_DIR) / ".local" / "bin"))
DEFAULT_SYSTEM_PATH = "/usr/local/bin:/usr/bin:/bin"

# External CLIs
OPENCLAW_BIN: str = os.getenv("OPENCLAW_BIN", "openclaw")
CODEXBAR_BIN: str = os.getenv("CODEXBAR_BIN", "codexbar")

# Cache freshness windows
STATUS_CACHE_TTL_SECONDS: float = float(os.getenv("STATUS_CACHE_TTL_SECONDS", "30"))
COST_TEXT_TTL_SECONDS: float = float(os.getenv("COST_TEXT_TTL_SECONDS", "120"))
COST_JSON_TTL_SECONDS: float = float(os.getenv("COST_JSON_TTL_SECONDS", "300"))
CRON_CACHE_TTL_SECONDS: float = float(os.getenv("CRON_CACHE_TTL_SECONDS", "30"))
SESSIONS_CACHE_TTL_SECONDS: float = float(os.getenv("SESSIONS_CACHE_TTL_SECONDS", "15"))

# Process timeouts
STATUS_TIMEOUT_SECONDS: float = float(os.getenv("STATUS_TIMEOUT_SECONDS", "8"))
COST_TEXT_TIMEOUT_SECONDS: float = float(os.getenv("COST_TEXT_TIMEOUT_SECONDS", "12"))
COST_JSON_TIMEOUT_SECONDS: float = float(os.getenv("COST_JSON_TIMEOUT_SECONDS", "15"))
CRON_TIMEOUT_SECONDS: float = float(os.getenv("CRON_TIMEOUT_SECONDS", "15"))
SESSIONS_TIMEOUT_SECONDS: float = float(os.getenv("SESSIONS_TIMEOUT_SECONDS", "15"))
CRON_ACTION_TIMEOUT_SECONDS: float = float(os.getenv("CRON_ACTION_TIMEOUT_SECONDS", "30"))
WAKE_TIMEOUT_SECONDS: float = float(os.getenv("WAKE_TIMEOUT_SECONDS", "10"))

# Approvals queue
APPROVALS_QUEUE_PATH: str = os.getenv(
    "APPROVALS_QUEUE_PATH",
    str(Path(HOME_DIR) / ".openclaw" / "autonomous" / "approvals" / "queue.jsonl"),
)
APPROVALS_APPROVER: str = os.getenv("APPROVALS_APPROVER", "dashboard")
APPROVALS_HOOK_PATH: str = os.getenv(
    "APPROVALS_HOOK_PATH",
    str(Path(HOME_DIR) / ".openclaw" / "hooks" / "autonomous-mode.sh"),
)
APPROVALS_HOOK_TIMEOUT_SECONDS: float = float(os.getenv("APPROVALS_HOOK_TIMEOUT_SECONDS", "30"))

# Gateway
OPENCLAW_GATEWAY_URL: str = os.getenv("OPENCLAW_GATEWAY_URL", "ws://127.0.0.1:18789")
OPENCLAW_GATEWAY_TOKEN: str = _env_secret("OPENCLAW_GATEWAY_TOKEN")
GATEWAY_TIMEOUT_SECONDS: float = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "5"))

CORS_ORIGINS: list[str] = _env_csv("CORS_ORIGINS")
WARM_CACHES_ON_STARTUP: bool = _env_bool("WARM_CACHES_ON_STARTUP", True)


def gateway_http_url() -> str:
    """Map the configured ws:// gateway URL onto its http:// equivalent."""
    url = OPENCLAW_GATEWAY_URL.strip().rstrip("/")
    if url.startswith("wss://"):
        return "https://" + url[len("wss://"):]
    if url.startswith("ws://"):
        return "http://" + url[len("ws://"):]
    return url


def command_env() -> dict[str, str]:
    """Environment overrides applied to every external command."""
    inherited_path = os.getenv("PATH") or DEFAULT_SYSTEM_PATH
    return {
        "PATH": f"{EXTRA_BIN_PATH}:{inherited_path}",
        "HOME": os.getenv("HOME") or HOME_DIR,
    }
