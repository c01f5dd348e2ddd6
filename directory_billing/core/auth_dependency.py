from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from directory_billing.core.security import Actor, decode_actor
from directory_billing.db.session import SessionLocal

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def get_db():
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    """Get the calling actor from the JWT token."""
    try:
        return decode_actor(token)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")


def get_optional_actor(token: str = Depends(optional_oauth2_scheme)) -> Actor:
    """Anonymous callers are treated as a non-privileged actor without a user id."""
    if not token:
        return Actor(user_id=None)
    try:
        return decode_actor(token)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Only privileged actors may run reconciliation by hand."""
    if not actor.is_privileged:
        raise HTTPException(status_code=403, detail="Admin role required")
    return actor
