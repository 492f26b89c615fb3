"""Bearer token helpers (HS256 JWTs)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app


def encode_token(user_id: int, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(hours=current_app.config.get("JWT_EXPIRES_HOURS", 24)),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def decode_token(token: str) -> dict:
    """Return {success, payload} or {success: False, error}."""
    try:
        payload = jwt.decode(
            token,
            current_app.config["JWT_SECRET"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
        return {"success": True, "payload": payload}
    except jwt.ExpiredSignatureError:
        return {"success": False, "error": "Token expired"}
    except jwt.InvalidTokenError as e:
        return {"success": False, "error": str(e)}
