"""Bearer-token identity resolution.

Session tokens are HS256 JWTs issued by the identity provider and verified
with ``CONSENSUS_API_KEY``. Only the ``sub`` claim matters for authorization;
``email`` and ``user_metadata.full_name`` seed the profile on first sight.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import HTTPException, Request
from jose import JWTError, jwt

from consensus.config import load_settings

log = logging.getLogger(__name__)

ALGORITHMS = ["HS256"]


@dataclass(frozen=True)
class Identity:
    actor_id: str
    email: str | None = None
    full_name: str | None = None


def decode_token(token: str, api_key: str | None) -> Identity:
    if not api_key:
        raise HTTPException(401, "Token verification unavailable; configure CONSENSUS_API_KEY")
    try:
        payload = jwt.decode(token, api_key, algorithms=ALGORITHMS, options={"verify_aud": False})
    except JWTError as exc:
        log.warning("Rejected session token: %s", exc)
        raise HTTPException(401, "Invalid token") from exc

    actor_id = payload.get("sub")
    if not actor_id:
        raise HTTPException(401, "Invalid token")
    metadata = payload.get("user_metadata") or {}
    full_name = metadata.get("full_name") or payload.get("name")
    return Identity(actor_id=str(actor_id), email=payload.get("email"), full_name=full_name)


def _bearer_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization")
    if not auth:
        return None
    if not auth.startswith("Bearer "):
        raise HTTPException(401, "Unauthorized")
    return auth.replace("Bearer ", "", 1)


def get_identity(request: Request) -> Identity:
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(401, "Unauthorized")
    return decode_token(token, load_settings().api_key)


def get_optional_identity(request: Request) -> Identity | None:
    """Like ``get_identity`` for public routes: no header means anonymous."""
    token = _bearer_token(request)
    if token is None:
        return None
    return decode_token(token, load_settings().api_key)
