"""
Security Utilities
Capability tokens, session JWT verification and input sanitization

Session JWTs are minted by the sign-in service that shares SECRET_KEY;
this package only verifies them.
"""

import hashlib
import html
import logging
import secrets
from typing import Any, Optional

# Input sanitization
import bleach

# Session tokens
from jose import JWTError
from jose import jwt as jose_jwt

from .config import JWT_ALGORITHM, SECRET_KEY

logger = logging.getLogger(__name__)

RESPONSE_TOKEN_BYTES = 32
RESPONSE_TOKEN_LENGTH = RESPONSE_TOKEN_BYTES * 2


# ============================================================================
# CAPABILITY TOKENS
# ============================================================================


def generate_response_token() -> str:
    """
    Generate an unguessable capability token for a public response link.

    256 bits from the OS CSPRNG, rendered as 64 lowercase hex characters so it
    can sit in a URL path without escaping.
    """
    return secrets.token_hex(RESPONSE_TOKEN_BYTES)


def is_well_formed_token(token: str) -> bool:
    """Cheap shape check before touching the database"""
    if not token or len(token) != RESPONSE_TOKEN_LENGTH:
        return False
    return all(c in "0123456789abcdef" for c in token)


def token_fingerprint(token: str) -> str:
    """Short non-reversible identifier safe to put in logs"""
    return hashlib.sha256(token.encode()).hexdigest()[:12]


# ============================================================================
# SESSION JWT
# ============================================================================


def verify_jwt_token(token: str) -> Optional[dict[str, Any]]:
    """
    Verify and decode a JWT token

    Returns:
        Decoded payload if valid, None if invalid or expired
    """
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        return None


# ============================================================================
# INPUT SANITIZATION
# ============================================================================


def strip_html(value: Optional[str]) -> Optional[str]:
    """Remove every HTML tag from free text submitted through public links"""
    if value is None:
        return None
    # bleach escapes what it keeps; unescape so templates escape exactly once
    return html.unescape(bleach.clean(value, tags=[], attributes={}, strip=True)).strip()
