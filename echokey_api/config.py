"""
Configuration module for the EchoKey service.

Centralizes all configuration with environment variable support and
validation. The shared secret is read once and cached for the life of
the process.
"""

import os
from functools import lru_cache
from typing import List

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("ECHOKEY_ENV", "dev")  # dev|stage|prod

# Development fallback only; production refuses to start without ECHOKEY_SECRET
DEV_SECRET = "ECHOKEY_DEV_SECRET"

# Paths
DB_PATH = os.getenv("ECHOKEY_DB_PATH", "data/echokey.db")
AUDIT_SIGNING_KEY_PATH = os.getenv("AUDIT_SIGNING_KEY_PATH", "secrets/audit_signing_key.json")
AUDIT_KID = os.getenv("AUDIT_KID", "echokey-audit-01")

# Signal lifecycle
TTL_FLOOR_SECONDS = int(os.getenv("TTL_FLOOR_SECONDS", "60"))
TTL_MULTIPLIER = float(os.getenv("TTL_MULTIPLIER", "4"))
REFRESH_INTERVAL_SECONDS = float(os.getenv("REFRESH_INTERVAL_SECONDS", "5"))
REFRESH_THRESHOLD_SECONDS = float(os.getenv("REFRESH_THRESHOLD_SECONDS", "10"))

# Validation attempts per transaction id per minute
VALIDATE_RPM = int(os.getenv("VALIDATE_RPM", "30"))

# Logging
LOG_LEVEL = os.getenv("ECHOKEY_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("ECHOKEY_LOG_JSON", "1").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("ECHOKEY_LOG_FILE", "")


class ConfigError(Exception):
    """Raised when the service cannot start with the current configuration."""


# ============================================================
# Secret
# ============================================================

@lru_cache(maxsize=1)
def get_secret() -> bytes:
    """
    Load the shared HMAC secret once.

    Raises:
        ConfigError: If running in production without ECHOKEY_SECRET
    """
    secret = os.getenv("ECHOKEY_SECRET", "")
    if not secret:
        if is_production():
            raise ConfigError("ECHOKEY_SECRET must be set in production")
        secret = DEV_SECRET
    return secret.encode("utf-8")


# ============================================================
# Validation
# ============================================================

def validate_config() -> List[str]:
    """
    Check configuration for problems.
    Returns a list of human-readable issues (empty when valid).
    """
    issues = []
    if is_production() and not os.getenv("ECHOKEY_SECRET"):
        issues.append("ECHOKEY_SECRET is not set")
    if os.getenv("ECHOKEY_SECRET", "") == DEV_SECRET and is_production():
        issues.append("ECHOKEY_SECRET uses the development value")
    if TTL_FLOOR_SECONDS <= 0:
        issues.append("TTL_FLOOR_SECONDS must be positive")
    if TTL_MULTIPLIER <= 0:
        issues.append("TTL_MULTIPLIER must be positive")
    if REFRESH_INTERVAL_SECONDS <= 0:
        issues.append("REFRESH_INTERVAL_SECONDS must be positive")
    if REFRESH_THRESHOLD_SECONDS >= TTL_FLOOR_SECONDS:
        issues.append("REFRESH_THRESHOLD_SECONDS must be below TTL_FLOOR_SECONDS")
    return issues


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("ECHOKEY_DEBUG", "").lower() in ("1", "true", "yes")
