"""Persistence layer for user data."""

from __future__ import annotations

from sqlalchemy.orm import Session

from server_hub.domain.entities import User
from server_hub.infrastructure.models import UserModel
from server_hub.utils import ensure_app_timezone, now_in_app_naive_datetime


class UserRepository:
    """Provide the user lookups needed for authentication."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User | None:
        model = self.session.get(UserModel, user_id)
        return self._to_entity(model) if model else None

    def get_by_email(self, email: str) -> User | None:
        model = (
            self.session.query(UserModel)
            .filter(UserModel.email == email.strip().lower())
            .first()
        )
        return self._to_entity(model) if model else None

    def create(self, user: User) -> User:
        model = UserModel(
            name=user.name,
            email=user.email.strip().lower(),
            password=user.password,
            is_active=user.is_active,
        )
        self.session.add(model)
        self.session.commit()
        self.session.refresh(model)
        return self._to_entity(model)

    def record_login(self, user_id: int) -> None:
        model = self.session.get(UserModel, user_id)
        if model is None:
            msg = f"User with id {user_id} not found"
            raise ValueError(msg)
        model.last_login = now_in_app_naive_datetime()
        self.session.add(model)
        self.session.commit()

    @staticmethod
    def _to_entity(model: UserModel) -> User:
        return User(
            id=model.id,
            name=model.name,
            email=model.email,
            password=model.password,
            is_active=model.is_active,
            created_at=ensure_app_timezone(model.created_at),
            last_login=ensure_app_timezone(model.last_login),
        )


__all__ = ["UserRepository"]
