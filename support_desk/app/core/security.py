"""
Authentication helpers: password hashing, signed tokens and FastAPI
dependencies resolving the calling participant.

Tokens are compact JWTs signed with HMAC-SHA256 using the application
secret.  The ``sub`` claim holds the account e-mail; the dependency
looks the account up on every request so disabled or deleted accounts
lose access immediately.  The resolved participant is a plain dict::

    {"sub": email, "user_id": ..., "role": "staff" | "customer",
     "customer_id": ... | None}

Session storage and login flows beyond ``/auth/login`` are the
concern of the surrounding panel, not of this service.
"""

import base64
import hashlib
import hmac
import json
import os
import time
from typing import Callable, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings

PBKDF2_ITERATIONS = 100_000


def _b64_url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def _b64_url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(message: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def create_access_token(data: Dict[str, str], expires_delta: Optional[int] = None) -> str:
    """Create a signed token carrying ``data`` plus an ``exp`` claim.

    Parameters
    ----------
    data : dict
        Claims to embed, at least ``{"sub": "<email>"}``.
    expires_delta : Optional[int]
        Lifetime in seconds.  Defaults to
        ``settings.access_token_expire_minutes * 60``.
    """
    claims = dict(data)
    claims["exp"] = int(time.time()) + (expires_delta or settings.access_token_expire_minutes * 60)
    header = {"alg": settings.algorithm, "typ": "JWT"}
    header_b64 = _b64_url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_b64 = _b64_url_encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    signature = _sign(f"{header_b64}.{payload_b64}".encode("utf-8"), settings.secret_key)
    return f"{header_b64}.{payload_b64}.{_b64_url_encode(signature)}"


def decode_access_token(token: str) -> Optional[Dict[str, str]]:
    """Verify ``token`` and return its claims, or ``None`` if invalid or expired."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    header_b64, payload_b64, signature_b64 = parts
    try:
        expected = _sign(f"{header_b64}.{payload_b64}".encode("utf-8"), settings.secret_key)
        if not hmac.compare_digest(expected, _b64_url_decode(signature_b64)):
            return None
        claims = json.loads(_b64_url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(claims, dict) or int(claims.get("exp") or 0) < int(time.time()):
        return None
    return claims


security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict[str, str]:
    """Dependency returning the authenticated participant.

    Raises HTTP 401 when the header is missing, the token is invalid or
    expired, or the account no longer exists or is disabled.
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")
    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise _unauthorized("Invalid or expired token")

    from support_desk.app.core.db import get_connection
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT id, role, customer_id, disabled FROM users WHERE email = ?",
            (payload.get("sub"),),
        ).fetchone()
    finally:
        conn.close()
    if not row:
        raise _unauthorized("User no longer exists")
    if row["disabled"]:
        raise _unauthorized("User account disabled")
    payload["user_id"] = row["id"]
    payload["role"] = row["role"]
    payload["customer_id"] = row["customer_id"]
    return payload


def require_roles(*roles: str) -> Callable[[Dict[str, str]], Dict[str, str]]:
    """Dependency factory restricting a route to the given roles.

    Use as ``Depends(require_roles("staff"))``.  Other roles get HTTP 403.
    """

    def _role_dependency(current_user: Dict[str, str] = Depends(get_current_user)) -> Dict[str, str]:
        if current_user.get("role") not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "forbidden", "message": "Insufficient permissions"},
            )
        return current_user

    return _role_dependency


def hash_password(password: str) -> str:
    """Hash a password with PBKDF2-HMAC-SHA256; returns ``"salthex$hashhex"``."""
    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return f"{salt.hex()}${dk.hex()}"


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Check ``plain_password`` against a value produced by :func:`hash_password`."""
    if not hashed_password or "$" not in hashed_password:
        return False
    salt_hex, hash_hex = hashed_password.split("$", 1)
    try:
        salt = bytes.fromhex(salt_hex)
        stored = bytes.fromhex(hash_hex)
    except ValueError:
        return False
    dk = hashlib.pbkdf2_hmac("sha256", plain_password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return hmac.compare_digest(dk, stored)
