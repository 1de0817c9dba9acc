from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

ACCESS_TOKEN_TTL = timedelta(hours=12)


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
    email: str | None = None,
) -> str:
    """Issue a bearer token whose `sub` is the user id. The role is never trusted from the token."""
    now = datetime.now(timezone.utc)
    payload: dict[str, object] = {"sub": str(user_id), "iat": now, "exp": now + (expires_delta or ACCESS_TOKEN_TTL)}
    if email is not None:
        payload["email"] = email
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> int:
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms), options={"require": ["sub", "exp"]})
    except InvalidTokenError as exc:  # expired, malformed, bad signature, missing claim
        raise ValueError("invalid token") from exc

    try:
        return int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise ValueError("token sub is not an integer") from exc
