from datetime import datetime, timedelta, timezone

import jwt

from booking.core import config

def create_access_token(
    subject: str,
    role: str = "customer",
    email: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    """Mint a token shaped like the auth provider's (used by tests and local tooling)."""
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {
        "sub": subject,
        "email": email,
        "user_metadata": {"role": role},
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    if config.JWT_AUDIENCE:
        payload["aud"] = config.JWT_AUDIENCE
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        audience=config.JWT_AUDIENCE,
        options={"verify_aud": config.JWT_AUDIENCE is not None},
    )
