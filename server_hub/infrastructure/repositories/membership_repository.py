"""Read access to server and group membership."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from server_hub.domain.entities import MEMBER_ROLE_MEMBER, ScopeMembership
from server_hub.domain.exceptions import StoreUnavailable
from server_hub.infrastructure.models import ScopeMemberModel
from server_hub.utils import ensure_app_timezone, now_in_app_naive_datetime


class MembershipRepository:
    """Resolve which users belong to a server or group."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_member_ids(self, scope_id: str) -> Sequence[int]:
        try:
            rows = (
                self.session.query(ScopeMemberModel.user_id)
                .filter(ScopeMemberModel.scope_id == scope_id)
                .order_by(ScopeMemberModel.user_id.asc())
                .all()
            )
        except DBAPIError as exc:
            self.session.rollback()
            raise StoreUnavailable("Membership store unavailable") from exc
        return [row.user_id for row in rows]

    def filter_member_scopes(self, user_id: int, scope_ids: Iterable[str]) -> set[str]:
        """Return the subset of ``scope_ids`` that ``user_id`` belongs to."""

        requested = {scope_id for scope_id in scope_ids if scope_id}
        if not requested:
            return set()
        try:
            rows = (
                self.session.query(ScopeMemberModel.scope_id)
                .filter(ScopeMemberModel.user_id == user_id)
                .filter(ScopeMemberModel.scope_id.in_(requested))
                .all()
            )
        except DBAPIError as exc:
            self.session.rollback()
            raise StoreUnavailable("Membership store unavailable") from exc
        return {row.scope_id for row in rows}

    def is_member(self, scope_id: str, user_id: int) -> bool:
        return bool(self.filter_member_scopes(user_id, [scope_id]))

    def get_role(self, scope_id: str, user_id: int) -> str | None:
        try:
            row = (
                self.session.query(ScopeMemberModel.role)
                .filter(ScopeMemberModel.scope_id == scope_id)
                .filter(ScopeMemberModel.user_id == user_id)
                .first()
            )
        except DBAPIError as exc:
            self.session.rollback()
            raise StoreUnavailable("Membership store unavailable") from exc
        return row.role if row else None

    def add(
        self,
        *,
        scope_id: str,
        scope_kind: str,
        user_id: int,
        role: str = MEMBER_ROLE_MEMBER,
    ) -> ScopeMembership:
        model = ScopeMemberModel(
            scope_id=scope_id,
            scope_kind=scope_kind,
            user_id=user_id,
            role=role,
            joined_at=now_in_app_naive_datetime(),
        )
        self.session.add(model)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError("User is already a member of this scope") from exc
        self.session.refresh(model)
        return self._to_entity(model)

    @staticmethod
    def _to_entity(model: ScopeMemberModel) -> ScopeMembership:
        return ScopeMembership(
            id=model.id,
            scope_id=model.scope_id,
            scope_kind=model.scope_kind,
            user_id=model.user_id,
            role=model.role,
            joined_at=ensure_app_timezone(model.joined_at),
        )


__all__ = ["MembershipRepository"]
