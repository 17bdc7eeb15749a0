"""
JWT token utilities for authentication.

Identity is owned by an external service. Tokens only carry the claims the
rental core authorizes on: the user id and the role.
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from backend.app.core.config import settings

REQUIRED_CLAIMS = ("user_id", "role")


def build_claims(user_id: int, role: str, email: Optional[str] = None) -> Dict[str, Any]:
    """Claim set for a rental platform user."""
    return {"sub": email or str(user_id), "user_id": user_id, "role": role}


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed access token.

    Args:
        data: Claims to encode, see build_claims
        expires_delta: Optional custom lifetime

    Example payload:
        {"sub": "renter@example.com", "user_id": 123, "role": "RENTER", "exp": 1234567890}
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate an access token.

    Returns None when the signature or expiry is invalid, or when a
    required claim is missing.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    if any(payload.get(claim) in (None, "") for claim in REQUIRED_CLAIMS):
        return None
    return payload
