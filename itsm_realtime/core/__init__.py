"""
ITSM Realtime core: settings, logging and token handling.
"""

from .config import Settings, get_settings
from .logging import setup_logging
from .security import (
    TokenClaims,
    create_access_token,
    decode_access_token,
    extract_token,
)

__all__ = [
    "Settings", "get_settings",
    "setup_logging",
    "TokenClaims", "create_access_token", "decode_access_token", "extract_token",
]
