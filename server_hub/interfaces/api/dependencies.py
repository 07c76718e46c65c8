"""FastAPI dependency utilities."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from server_hub.domain.entities import User
from server_hub.domain.exceptions import AuthFailure
from server_hub.infrastructure.database import SessionLocal, get_db
from server_hub.infrastructure.notifications import NotificationDelivery
from server_hub.infrastructure.repositories import UserRepository
from server_hub.infrastructure.security import decode_access_token, password_signature

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")

_INVALID_CREDENTIALS = "Invalid credentials"


def resolve_user(token: str, db: Session) -> User:
    """Resolve the active user owning ``token`` or raise :class:`AuthFailure`."""

    try:
        payload = decode_access_token(token)
    except ValueError as exc:
        raise AuthFailure(_INVALID_CREDENTIALS) from exc

    subject = payload.get("sub")
    signature_claim = payload.get("pwd_sig")
    if subject is None or not isinstance(signature_claim, str):
        raise AuthFailure(_INVALID_CREDENTIALS)
    try:
        user_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise AuthFailure(_INVALID_CREDENTIALS) from exc

    user = UserRepository(db).get(user_id)
    if user is None:
        raise AuthFailure("User not found")
    if signature_claim != password_signature(user.password, user.is_active):
        raise AuthFailure(_INVALID_CREDENTIALS)
    if not user.is_active:
        raise AuthFailure("Inactive user")
    return user


def resolve_identity(token: str) -> int:
    """Authentication collaborator used by realtime connections."""

    session = SessionLocal()
    try:
        user = resolve_user(token, session)
    finally:
        session.close()
    return user.id


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Return the authenticated user from the provided token."""

    try:
        return resolve_user(token, db)
    except AuthFailure as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def get_notification_delivery(request: Request) -> NotificationDelivery:
    """Return the delivery components owned by the running application."""

    return request.app.state.notification_delivery
