from dataclasses import dataclass

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from booking.auth import jwt_handler
from booking.core.errors import AuthError
from booking.models.user import USER_ROLES

DEFAULT_ROLE = "customer"

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class UserContext:
    """Identity of the caller, passed explicitly into every role check."""
    user_id: str
    role: str = DEFAULT_ROLE
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_staff(self) -> bool:
        return self.role == "staff"

    @property
    def is_customer(self) -> bool:
        return self.role == "customer"


def user_context_from_claims(payload: dict) -> UserContext:
    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Invalid token subject")

    metadata = payload.get("user_metadata") or {}
    role = metadata.get("role") or DEFAULT_ROLE
    if role not in USER_ROLES:
        role = DEFAULT_ROLE

    return UserContext(user_id=str(user_id), role=role, email=payload.get("email"))


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> UserContext:
    if credentials is None:
        raise AuthError()

    try:
        payload = jwt_handler.decode_access_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise AuthError("Invalid token") from exc

    return user_context_from_claims(payload)
