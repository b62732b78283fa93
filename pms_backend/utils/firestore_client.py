import base64
import json
import logging
import os
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import credentials, firestore


logger = logging.getLogger(__name__)

_REQUIRED_INDIVIDUAL_VARS = (
    "FIREBASE_PROJECT_ID",
    "FIREBASE_CLIENT_EMAIL",
    "FIREBASE_PRIVATE_KEY",
)


def _get_project_id() -> Optional[str]:
    return os.getenv("FIREBASE_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT")


def _unescape_private_key(value: str) -> str:
    # Keys pasted into env files usually carry literal "\n" sequences.
    return value.replace("\\n", "\n")


def _get_credential_source() -> str:
    if all(os.getenv(name) for name in _REQUIRED_INDIVIDUAL_VARS):
        return "individual"
    if os.getenv("FIREBASE_SERVICE_ACCOUNT"):
        return "json"
    if os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_B64"):
        return "json_b64"
    if os.getenv("FIREBASE_SERVICE_ACCOUNT_PATH"):
        return "path"
    if os.getenv("GOOGLE_APPLICATION_CREDENTIALS"):
        return "adc"
    return "none"


def _service_account_info(parsed: Dict[str, Any]) -> Dict[str, Any]:
    if isinstance(parsed.get("private_key"), str):
        parsed["private_key"] = _unescape_private_key(parsed["private_key"])
    return parsed


def _get_credentials():
    source = _get_credential_source()

    if source == "individual":
        return credentials.Certificate(
            {
                "type": "service_account",
                "project_id": os.getenv("FIREBASE_PROJECT_ID"),
                "client_email": os.getenv("FIREBASE_CLIENT_EMAIL"),
                "private_key": _unescape_private_key(os.getenv("FIREBASE_PRIVATE_KEY") or ""),
                "token_uri": "https://oauth2.googleapis.com/token",
            }
        )

    if source == "json":
        try:
            parsed = json.loads(os.getenv("FIREBASE_SERVICE_ACCOUNT") or "")
        except json.JSONDecodeError as exc:
            raise ValueError("Invalid FIREBASE_SERVICE_ACCOUNT") from exc
        return credentials.Certificate(_service_account_info(parsed))

    if source == "json_b64":
        try:
            decoded = base64.b64decode(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_B64") or "")
            parsed = json.loads(decoded.decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValueError("Invalid FIREBASE_SERVICE_ACCOUNT_JSON_B64") from exc
        return credentials.Certificate(_service_account_info(parsed))

    if source == "path":
        return credentials.Certificate(os.getenv("FIREBASE_SERVICE_ACCOUNT_PATH"))

    return credentials.ApplicationDefault()


def init_firebase():
    if firebase_admin._apps:
        return

    cred = _get_credentials()
    project_id = _get_project_id()
    options = {"projectId": project_id} if project_id else None

    if options:
        firebase_admin.initialize_app(cred, options)
    else:
        firebase_admin.initialize_app(cred)

    logger.info(
        "Firebase Admin initialized via %s (project_id=%s)",
        _get_credential_source(),
        project_id,
    )


def get_firestore_client():
    init_firebase()
    return firestore.client()


def get_firebase_config_status() -> dict:
    return {
        "credential_source": _get_credential_source(),
        "project_id": _get_project_id(),
        "initialized": bool(firebase_admin._apps),
    }
