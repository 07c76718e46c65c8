"""Use case for creating users."""

from sqlalchemy.orm import Session

from server_hub.domain.entities import User
from server_hub.infrastructure.repositories import UserRepository
from server_hub.infrastructure.security import get_password_hash


def create_user(session: Session, *, name: str, email: str, password: str) -> User:
    """Create a new active user ensuring unique email addresses."""

    repository = UserRepository(session)
    if repository.get_by_email(email):
        raise ValueError("Email address is already registered")
    if not password:
        raise ValueError("Password must not be empty")

    user = User(
        id=None,
        name=name,
        email=email,
        password=get_password_hash(password),
        is_active=True,
    )
    return repository.create(user)
