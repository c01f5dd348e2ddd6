import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import jwt, JWTError
from directory_billing.core.config import SECRET_KEY, ALGORITHM

logger = logging.getLogger(__name__)

PRIVILEGED_ROLES = ("ADMIN",)


@dataclass(frozen=True)
class Actor:
    """The caller on whose behalf a lifecycle operation runs."""
    user_id: Optional[int]
    role: str = "USER"

    @property
    def is_privileged(self) -> bool:
        return self.role.upper() in PRIVILEGED_ROLES


def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_actor(token: str) -> Actor:
    """
    Decode a bearer token into an Actor.

    The token must carry the user id in "sub"; "role" defaults to USER.

    Raises:
        ValueError: If the token is invalid or has no subject
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Token decode failed: {e}")
        raise ValueError("Invalid token") from e

    subject = payload.get("sub")
    if subject is None:
        raise ValueError("Invalid token")

    try:
        user_id = int(subject)
    except (TypeError, ValueError) as e:
        raise ValueError("Invalid token subject") from e

    return Actor(user_id=user_id, role=str(payload.get("role", "USER")))
