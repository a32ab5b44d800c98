"""
Adaptive Metrics Cache — Runtime Configuration
────────────────────────────────────────────────
Every knob the cache reads at start-up. Override via environment
variables or a local .env file.

  TOKEN_ADDRESS      — the single token this deployment tracks
  DEXSCREENER_API    — upstream base URL, token address is appended
  REDIS_URL          — cache + history backend (in-memory if unreachable)
  REQUEST_TIMEOUT    — upstream GET timeout in seconds
  RETENTION_DAYS     — price history older than this is swept
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ── Token + upstream ──────────────────────────────────────────
TOKEN_ADDRESS   = os.getenv("TOKEN_ADDRESS", "FrSFwE2BxWADEyUWFXDMAeomzuB4r83ZvzdG9sevpump")
DEXSCREENER_API = os.getenv("DEXSCREENER_API", "https://api.dexscreener.com/latest/dex/tokens").rstrip("/")
HISTORY_SOURCE  = os.getenv("HISTORY_SOURCE", "dexscreener")

REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "10"))

UPSTREAM_HEADERS = {
    "User-Agent": "adaptive-metrics-cache/1.0",
    "Accept": "application/json",
}

# ── Storage ───────────────────────────────────────────────────
REDIS_URL      = os.getenv("REDIS_URL", "redis://localhost:6379")
RETENTION_DAYS = int(os.getenv("RETENTION_DAYS", "30"))

# ── Background collector ──────────────────────────────────────
COLLECTOR_ENABLED          = _env_bool("COLLECTOR_ENABLED", "true")
COLLECTOR_BASE_INTERVAL_MS = int(os.getenv("COLLECTOR_BASE_INTERVAL_MS", "60000"))
COLLECTOR_MAX_ERRORS       = int(os.getenv("COLLECTOR_MAX_ERRORS", "5"))
COLLECTOR_MAX_BACKOFF_MS   = int(os.getenv("COLLECTOR_MAX_BACKOFF_MS", "300000"))
CLEANUP_EVERY_HOURS        = int(os.getenv("CLEANUP_EVERY_HOURS", "24"))

# ── HTTP host ─────────────────────────────────────────────────
PORT = int(os.getenv("PORT", "8000"))


def token_cache_key(token_address: str = TOKEN_ADDRESS) -> str:
    return f"token_metrics_{token_address}"


def token_endpoint(token_address: str = TOKEN_ADDRESS) -> str:
    return f"{DEXSCREENER_API}/{token_address}"
