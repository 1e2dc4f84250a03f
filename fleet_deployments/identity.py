"""
Caller identity decoded from the management API bearer token.

The API gateway has already verified the token's signature; this module only
reads its claims.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, Optional

from fastapi import Header, HTTPException
from pydantic import BaseModel

CLAIM_SUBJECT = "sub"
CLAIM_TENANT = "fleet.tenant"
CLAIM_USER = "fleet.user"
CLAIM_DEVICE = "fleet.device"
CLAIM_PLAN = "fleet.plan"


class IdentityError(ValueError):
    """The bearer token is missing or cannot be decoded."""


class Identity(BaseModel):
    """Claims of the calling user or device."""

    subject: str
    tenant: str = ""
    is_user: bool = False
    is_device: bool = False
    plan: str = ""


class AuthenticatedIdentity(BaseModel):
    """Identity plus the raw token it was decoded from."""

    identity: Identity
    token: str


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def extract_jwt_from_header(authorization: Optional[str]) -> str:
    """Return the token of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        raise IdentityError("missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise IdentityError("malformed Authorization header")
    return token


def extract_identity(token: str) -> Identity:
    """Decode the claims of `token` without verifying its signature."""
    parts = token.split(".")
    if len(parts) != 3:
        raise IdentityError("malformed token")
    try:
        claims: Dict[str, Any] = json.loads(_b64url_decode(parts[1]))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise IdentityError(f"malformed token: {e}") from e
    if not isinstance(claims, dict) or not claims.get(CLAIM_SUBJECT):
        raise IdentityError("token has no subject")

    return Identity(
        subject=str(claims[CLAIM_SUBJECT]),
        tenant=str(claims.get(CLAIM_TENANT) or ""),
        is_user=bool(claims.get(CLAIM_USER, False)),
        is_device=bool(claims.get(CLAIM_DEVICE, False)),
        plan=str(claims.get(CLAIM_PLAN) or ""),
    )


async def require_identity(
    authorization: Optional[str] = Header(default=None),
) -> AuthenticatedIdentity:
    """FastAPI dependency: decode the caller's bearer token or answer 401."""
    try:
        token = extract_jwt_from_header(authorization)
        identity = extract_identity(token)
    except IdentityError as e:
        raise HTTPException(
            status_code=401,
            detail={"error": {"code": "UNAUTHORIZED", "message": str(e)}},
            headers={"WWW-Authenticate": 'Bearer realm="ManagementJWT"'},
        )
    return AuthenticatedIdentity(identity=identity, token=token)
