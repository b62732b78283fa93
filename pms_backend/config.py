"""
Runtime configuration read from the environment.
"""
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from the project .env if present.
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _env_email(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip().lower()


def _redact(value: str, *, keep: int = 4) -> str:
    raw = (value or "").strip()
    if not raw:
        return ""
    if len(raw) <= keep:
        return "*" * len(raw)
    return f"{raw[:keep]}***"


class Settings:
    def __init__(self):
        self.debug = env_bool("DEBUG", False)
        self.log_level = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
        self.port = env_int("PORT", 5000)

        # One address usually plays both admin parts; each can be overridden.
        self.admin_email = _env_email("ADMIN_EMAIL")
        self.admin_notification_email = _env_email(
            "ADMIN_NOTIFICATION_EMAIL", self.admin_email
        )
        self.protected_admin_email = _env_email(
            "PROTECTED_ADMIN_EMAIL", self.admin_email
        )
        self.admin_api_key: Optional[str] = (os.getenv("ADMIN_API_KEY") or "").strip() or None

        self.otp_ttl_seconds = env_int("OTP_TTL_SECONDS", 5 * 60)
        self.signup_code_ttl_seconds = env_int("SIGNUP_CODE_TTL_SECONDS", 10 * 60)
        self.signup_create_account = env_bool("SIGNUP_CREATE_ACCOUNT", True)
        self.users_collection = (os.getenv("USERS_COLLECTION") or "users").strip()

        self.cors_origins = self._parse_cors_origins(os.getenv("CORS_ORIGINS") or "")

    @staticmethod
    def _parse_cors_origins(raw: str) -> List[str]:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        return origins or ["*"]

    def is_protected_email(self, email: Optional[str]) -> bool:
        candidate = (email or "").strip().lower()
        return bool(candidate) and candidate == self.protected_admin_email

    def is_admin_email(self, email: Optional[str]) -> bool:
        candidate = (email or "").strip().lower()
        return bool(candidate) and candidate == self.admin_notification_email

    def snapshot(self) -> dict:
        """Startup checklist with secrets redacted."""
        return {
            "debug": self.debug,
            "port": self.port,
            "admin_notification_email": self.admin_notification_email,
            "protected_admin_email": self.protected_admin_email,
            "admin_api_key": _redact(self.admin_api_key or ""),
            "otp_ttl_seconds": self.otp_ttl_seconds,
            "signup_code_ttl_seconds": self.signup_code_ttl_seconds,
            "signup_create_account": self.signup_create_account,
            "users_collection": self.users_collection,
            "cors_origins": self.cors_origins,
        }
