"""
ITSM Realtime API

FastAPI application with:
- Notification inbox (list, history, unread count, read, delete)
- Admin push (targeted notification, announcement)
- WebSocket endpoint feeding the notification hub
- Health check with active session count
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import jwt
from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Query,
    Request,
    WebSocket,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .. import __version__
from ..core.config import Settings, get_settings
from ..core.logging import setup_logging
from ..core.security import TokenClaims, decode_access_token, extract_token
from ..models import (
    Announcement,
    Notification,
    NotificationListResponse,
    NotificationType,
    UnreadCount,
)
from ..realtime import NotificationHub, OutboundBuffer, Session, serve_session
from ..repositories import InMemoryNotificationRepository, InMemoryUserRepository
from ..services import (
    NotificationForbiddenError,
    NotificationNotFoundError,
    NotificationService,
    RecipientNotFoundError,
)

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CreateNotificationRequest(BaseModel):
    user_id: int
    type: NotificationType
    title: str
    message: str
    link_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AnnounceRequest(BaseModel):
    title: str
    message: str
    user_ids: Optional[List[int]] = None  # None = everyone connected


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notification_service


def get_current_claims(
    request: Request,
    authorization: Optional[str] = Header(None)
) -> TokenClaims:
    token = extract_token(authorization=authorization)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token required"
        )
    try:
        return decode_access_token(token, request.app.state.settings)
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )


def require_admin(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
    if claims.role != ADMIN_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return claims


# =============================================================================
# HEALTH CHECK
# =============================================================================

health_router = APIRouter()


@health_router.get("/health")
async def health_check(request: Request, hub: NotificationHub = Depends(get_hub)):
    return {
        "status": "healthy",
        "service": request.app.state.settings.app_name,
        "version": __version__,
        "active_sessions": hub.active_session_count(),
    }


# =============================================================================
# NOTIFICATION ENDPOINTS
# =============================================================================

notifications_router = APIRouter(prefix="/notifications", tags=["notifications"])


@notifications_router.get("", response_model=List[Notification])
async def list_notifications(
    claims: TokenClaims = Depends(get_current_claims),
    service: NotificationService = Depends(get_notification_service)
):
    return await service.list_for_user(claims.user_id)


@notifications_router.get("/unread", response_model=List[Notification])
async def list_unread(
    claims: TokenClaims = Depends(get_current_claims),
    service: NotificationService = Depends(get_notification_service)
):
    """Unread notifications (the bell dropdown)."""
    return await service.list_unread(claims.user_id)


@notifications_router.get("/unread/count", response_model=UnreadCount)
async def unread_count(
    claims: TokenClaims = Depends(get_current_claims),
    service: NotificationService = Depends(get_notification_service)
):
    return UnreadCount(count=await service.unread_count(claims.user_id))


@notifications_router.get("/history", response_model=NotificationListResponse)
async def notification_history(
    page: int = 1,
    limit: int = 20,
    is_read: Optional[bool] = None,
    search: str = "",
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    user_id: Optional[int] = None,
    claims: TokenClaims = Depends(get_current_claims),
    service: NotificationService = Depends(get_notification_service)
):
    """
    Paginated history with read-state, text and date filters.

    Admins may pass `user_id` to browse another user's history; the
    unread count then follows that user.
    """
    target_user_id = claims.user_id
    if user_id is not None and user_id != claims.user_id:
        # Browsing another user's history is an admin view
        if claims.role != ADMIN_ROLE:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Admin role required to view another user's history"
            )
        target_user_id = user_id

    return await service.history(
        target_user_id,
        page=page,
        limit=limit,
        is_read=is_read,
        search=search,
        date_from=date_from,
        date_to=date_to
    )


@notifications_router.post("/read-all")
async def mark_all_read(
    claims: TokenClaims = Depends(get_current_claims),
    service: NotificationService = Depends(get_notification_service)
):
    updated = await service.mark_all_as_read(claims.user_id)
    return {"message": "All notifications marked as read", "updated": updated}


@notifications_router.post("/{notification_id}/read", response_model=Notification)
async def mark_read(
    notification_id: int,
    claims: TokenClaims = Depends(get_current_claims),
    service: NotificationService = Depends(get_notification_service)
):
    try:
        return await service.mark_as_read(notification_id, claims.user_id)
    except NotificationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except NotificationForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))


@notifications_router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: int,
    claims: TokenClaims = Depends(get_current_claims),
    service: NotificationService = Depends(get_notification_service)
):
    try:
        await service.delete(notification_id, claims.user_id)
    except NotificationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except NotificationForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))


# =============================================================================
# ADMIN PUSH ENDPOINTS
# =============================================================================

@notifications_router.post(
    "",
    response_model=Notification,
    status_code=status.HTTP_201_CREATED
)
async def create_notification(
    request: CreateNotificationRequest,
    claims: TokenClaims = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service)
):
    """
    Store a notification for a user and push it live.
    """
    try:
        return await service.create(
            request.user_id,
            request.type,
            request.title,
            request.message,
            link_url=request.link_url,
            metadata=request.metadata
        )
    except RecipientNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@notifications_router.post(
    "/announce",
    response_model=Announcement,
    status_code=status.HTTP_202_ACCEPTED
)
async def announce(
    request: AnnounceRequest,
    claims: TokenClaims = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service)
):
    """
    Push an announcement. Best-effort: offline users never see it.
    """
    return await service.announce(request.title, request.message, user_ids=request.user_ids)


# =============================================================================
# WEBSOCKET
# =============================================================================

ws_router = APIRouter()


@ws_router.websocket("/ws")
async def notifications_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(None)
):
    """
    Real-time notification stream.

    Token comes from `?token=` (browsers cannot set headers on WebSocket)
    or from the Authorization header.
    """
    settings: Settings = websocket.app.state.settings
    hub: NotificationHub = websocket.app.state.hub

    raw_token = extract_token(token, websocket.headers.get("authorization"))
    if raw_token is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        claims = decode_access_token(raw_token, settings)
    except jwt.InvalidTokenError as exc:
        logger.info("WebSocket rejected: %s", exc)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    session = Session(
        user_id=claims.user_id,
        username=claims.username,
        buffer=OutboundBuffer(settings.ws_send_buffer_size)
    )
    hub.register(session)
    await serve_session(hub, websocket, session, settings)


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    user_repo=None,
    notification_repo=None
) -> FastAPI:
    """
    Build the application and its single notification hub.

    The hub lives on `app.state.hub` for the lifetime of the app.
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="ITSM Realtime",
        description="Real-time notifications for the ITSM backend",
        version=__version__
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    hub = NotificationHub()
    app.state.settings = settings
    app.state.hub = hub
    app.state.notification_service = NotificationService(
        notification_repo or InMemoryNotificationRepository(),
        user_repo or InMemoryUserRepository(),
        hub
    )

    app.include_router(health_router)
    app.include_router(notifications_router)
    app.include_router(ws_router)

    return app


# =============================================================================
# RUN
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
