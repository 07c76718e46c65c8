"""Endpoints and websocket handler for realtime notifications."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sqlalchemy.orm import Session

from server_hub.application.use_cases.notifications import (
    publish_notification,
    publish_scope_notification,
)
from server_hub.domain.entities import (
    MEMBER_ROLE_ADMIN,
    MEMBER_ROLE_MODERATOR,
    MEMBER_ROLE_OWNER,
    Connection,
    NotificationRecord,
    User,
)
from server_hub.domain.exceptions import (
    AuthFailure,
    InvalidAcknowledgement,
    StoreUnavailable,
)
from server_hub.infrastructure.database import get_db
from server_hub.infrastructure.notifications import (
    NotificationDelivery,
    WebSocketTransport,
)
from server_hub.infrastructure.repositories import (
    MembershipRepository,
    NotificationRepository,
)
from server_hub.interfaces.api.dependencies import (
    get_current_user,
    get_notification_delivery,
)
from server_hub.interfaces.api.schemas import (
    MarkAllReadResponse,
    NotificationCreate,
    NotificationRead,
    ScopeNotificationCreate,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)

_PUBLISHING_ROLES = {MEMBER_ROLE_OWNER, MEMBER_ROLE_ADMIN, MEMBER_ROLE_MODERATOR}


def _notification_to_schema(record: NotificationRecord) -> NotificationRead:
    return NotificationRead(
        id=record.id or 0,
        seq=record.sequence,
        recipient_id=record.recipient_id,
        type=record.notification_type,
        heading=record.heading,
        message=record.message,
        scope_id=record.scope_id,
        link=record.link,
        read=record.is_read,
        state=record.delivery_state,
        created_at=record.created_at,
        read_at=record.read_at,
    )


@router.get("/", response_model=list[NotificationRead])
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[NotificationRead]:
    """Return the most recent notifications for the authenticated user."""

    records = NotificationRepository(db).list_for_user(current_user.id, limit=limit)
    return [_notification_to_schema(record) for record in records]


@router.get("/unread", response_model=list[NotificationRead])
def list_unread_notifications(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[NotificationRead]:
    records = NotificationRepository(db).list_unread(current_user.id, limit=limit)
    return [_notification_to_schema(record) for record in records]


@router.get("/pending", response_model=list[NotificationRead])
def list_pending_notifications(
    after_seq: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[NotificationRead]:
    """Return notifications after ``after_seq`` in ascending order for catch-up."""

    records = NotificationRepository(db).list_pending(
        current_user.id, after_seq, limit=limit
    )
    return [_notification_to_schema(record) for record in records]


@router.post("/", response_model=NotificationRead, status_code=status.HTTP_201_CREATED)
def create_notification(
    payload: NotificationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    delivery: NotificationDelivery = Depends(get_notification_delivery),
) -> NotificationRead:
    """Store a notification for a user and push it to their live connections."""

    try:
        record = publish_notification(
            db,
            delivery.dispatcher,
            recipient_id=payload.recipient_id,
            heading=payload.heading,
            message=payload.message,
            scope_id=payload.scope_id,
            link=payload.link,
            notification_type=payload.type,
        )
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    logger.info(
        "User %s notified user %s (seq=%s)",
        current_user.id,
        record.recipient_id,
        record.sequence,
    )
    return _notification_to_schema(record)


@router.post(
    "/scopes/{scope_id}",
    response_model=list[NotificationRead],
    status_code=status.HTTP_201_CREATED,
)
def create_scope_notification(
    scope_id: str,
    payload: ScopeNotificationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    delivery: NotificationDelivery = Depends(get_notification_delivery),
) -> list[NotificationRead]:
    """Notify every member of a server or group except the sender."""

    role = MembershipRepository(db).get_role(scope_id, current_user.id)
    if role is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scope not found")
    if role not in _PUBLISHING_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")

    try:
        records = publish_scope_notification(
            db,
            delivery.dispatcher,
            scope_id=scope_id,
            heading=payload.heading,
            message=payload.message,
            link=payload.link,
            notification_type=payload.type,
            exclude_user_id=current_user.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return [_notification_to_schema(record) for record in records]


@router.post("/{seq}/read", response_model=NotificationRead)
def mark_notification_read(
    seq: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationRead:
    repository = NotificationRepository(db)
    if repository.get(current_user.id, seq) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found"
        )
    repository.mark_read(current_user.id, seq)
    return _notification_to_schema(repository.get(current_user.id, seq))


@router.patch("/mark-all-read", response_model=MarkAllReadResponse)
def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MarkAllReadResponse:
    updated = NotificationRepository(db).mark_all_read(current_user.id)
    return MarkAllReadResponse(
        success=True,
        message="All notifications marked as read",
        updated_count=updated,
    )


def _parse_scopes(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [scope.strip() for scope in raw.split(",") if scope.strip()]


def _parse_sequence(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        sequence = int(value)
    except (TypeError, ValueError):
        return None
    return sequence if sequence >= 0 else None


async def _handle_client_message(
    delivery: NotificationDelivery,
    connection: Connection,
    message: Any,
) -> dict[str, Any] | None:
    """Apply one client message and return the reply to send, if any."""

    if not isinstance(message, dict):
        return {"error": "Messages must be JSON objects"}

    if message.get("type") == "ping":
        return {"type": "pong"}

    connection_id = connection.connection_id
    try:
        if "acknowledge" in message:
            sequence = _parse_sequence(message["acknowledge"])
            if sequence is None:
                return {"error": "acknowledge expects a sequence number"}
            acknowledged = await delivery.dispatcher.acknowledge(connection_id, sequence)
            return {"acknowledged": acknowledged}

        if "markRead" in message:
            sequence = _parse_sequence(message["markRead"])
            if sequence is None:
                return {"error": "markRead expects a sequence number"}
            await delivery.dispatcher.mark_read(connection_id, sequence)
            return {"read": sequence}

        if "subscribe" in message:
            scope_id = message["subscribe"]
            if not isinstance(scope_id, str) or not scope_id.strip():
                return {"error": "subscribe expects a scope id"}
            scope_id = scope_id.strip()
            allowed = await delivery.store.member_scopes(connection.user_id, [scope_id])
            if scope_id not in allowed:
                return {"error": f"Not a member of {scope_id}"}
            delivery.registry.subscribe(connection_id, scope_id)
            return {"subscribed": scope_id}

        if "unsubscribe" in message:
            scope_id = message["unsubscribe"]
            if not isinstance(scope_id, str) or not scope_id.strip():
                return {"error": "unsubscribe expects a scope id"}
            delivery.registry.unsubscribe(connection_id, scope_id.strip())
            return {"unsubscribed": scope_id.strip()}
    except InvalidAcknowledgement as exc:
        return {"error": str(exc)}
    except StoreUnavailable:
        return {"error": "Notification store unavailable, retry later"}

    return {"error": "Unknown message"}


@router.websocket("/ws")
async def notifications_websocket(websocket: WebSocket) -> None:
    """Websocket endpoint that streams notifications to the authenticated user."""

    delivery: NotificationDelivery = websocket.app.state.notification_delivery
    token = websocket.query_params.get("token")
    scopes = _parse_scopes(websocket.query_params.get("scopes"))
    resume_after = _parse_sequence(websocket.query_params.get("last_seq"))

    await websocket.accept()
    transport = WebSocketTransport(websocket)
    try:
        connection = await delivery.connect(
            transport, token, scopes, resume_after=resume_after
        )
    except AuthFailure as exc:
        logger.info("Rejected websocket connection: %s", exc)
        await transport.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    except StoreUnavailable:
        await transport.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    connection_id = connection.connection_id
    try:
        while delivery.registry.get(connection_id) is not None:
            try:
                message = await websocket.receive_json()
            except (ValueError, KeyError):
                await connection.transport.send_json({"error": "Invalid JSON message"})
                continue

            delivery.registry.touch(connection_id)
            reply = await _handle_client_message(delivery, connection, message)
            if reply is not None:
                await connection.transport.send_json(reply)
    except WebSocketDisconnect:
        logger.debug("Connection %s closed by client", connection_id)
    except RuntimeError as exc:
        logger.debug("Connection %s is no longer usable: %s", connection_id, exc)
    finally:
        await delivery.disconnect(connection_id)
