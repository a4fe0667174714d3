import logging
import sys
from typing import Any, Dict, Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("dispute_manager")


_SENSITIVE_KEYS = (
    "access_token",
    "client_secret",
    "api_key",
    "authorization",
    "x-shopify-access-token",
    "x-shopify-hmac-sha256",
)


def mask_secret(value: Optional[str]) -> str:
    if not value:
        return "***"
    value = str(value)
    if len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "***"


def sanitize_credentials(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return a shallow copy of ``data`` with credential values masked."""
    if not data:
        return {}

    sanitized = dict(data)
    for key in list(sanitized.keys()):
        if key.lower() in _SENSITIVE_KEYS:
            sanitized[key] = mask_secret(sanitized[key])
    return sanitized
