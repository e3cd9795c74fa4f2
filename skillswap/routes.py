from fastapi import (
    APIRouter, BackgroundTasks, Depends, HTTPException, Request, status, WebSocket, WebSocketDisconnect
)
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from skillswap.database import get_db, SessionLocal
from skillswap.schemas import (
    UserSignup, UserLogin, TokenResponse, UserResponse, UserPublic,
    StartConversationRequest, ConversationResponse, ConversationSummary,
    MessageCreate, MessageResponse, ExchangeCreate, ExchangeStatusUpdate, ExchangeResponse,
    RatingCreate, RatingResponse,
    message_to_response, conversation_to_summary
)
from skillswap.crud import (
    create_user, get_user_by_email, verify_password, require_user,
    get_or_create_conversation, get_user_conversations, get_last_messages,
    create_message, get_messages,
    create_exchange, get_user_exchanges, update_exchange_status,
    create_rating, get_user_ratings
)
from skillswap.auth import AuthProvider
from skillswap.errors import ServiceError, ValidationError, unauthenticated
from skillswap.events import publish_event
from skillswap.models import MessageType, User
from skillswap.realtime import ConnectionRegistry
import json
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")
live_router = APIRouter(tags=["live"])
http_bearer = HTTPBearer(auto_error=False)


def get_auth_provider(request: Request) -> AuthProvider:
    return request.app.state.auth_provider


def get_connections(request: Request) -> ConnectionRegistry:
    return request.app.state.connections


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(http_bearer),
    db: Session = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
) -> User:
    token = None
    if credentials and credentials.scheme.lower() == "bearer":
        token = credentials.credentials
    return provider.authenticate(token, db)


def schedule_fan_out(
    background_tasks: BackgroundTasks,
    connections: ConnectionRegistry,
    conversation,
    message: MessageResponse,
):
    """Queue live delivery of a stored message to both participants and the chat.message event."""
    payload = message.model_dump(mode="json", by_alias=True)
    background_tasks.add_task(connections.notify, conversation.id, conversation.participant_ids, payload)
    background_tasks.add_task(publish_event, "chat.message", {
        "conversation_id": conversation.id,
        "recipient_id": conversation.other_participant(message.sender_id),
        "sender_id": message.sender_id,
        "message_type": message.message_type,
        "preview": (message.content or "")[:140],
    })


# Auth

def require_credential_provider(provider: AuthProvider):
    if not provider.supports_credentials:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Password sign-in is not available with the '{provider.name}' auth provider"
        )


@router.post("/auth/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED, tags=["auth"])
def signup(
    payload: UserSignup,
    db: Session = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider)
):
    require_credential_provider(provider)
    user = create_user(db, payload.email, payload.password, payload.first_name, payload.last_name)
    return TokenResponse(access_token=provider.issue_token(user), user=UserResponse.model_validate(user))


@router.post("/auth/login", response_model=TokenResponse, tags=["auth"])
def login(
    payload: UserLogin,
    db: Session = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider)
):
    require_credential_provider(provider)
    user = get_user_by_email(db, payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        raise unauthenticated("Invalid email or password")
    return TokenResponse(access_token=provider.issue_token(user), user=UserResponse.model_validate(user))


@router.get("/auth/user", response_model=UserResponse, tags=["auth"])
def current_user_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/users/{user_id}", response_model=UserPublic, tags=["users"])
def get_user_profile(user_id: str, db: Session = Depends(get_db)):
    return require_user(db, user_id)


# Conversations

@router.post(
    "/conversations",
    response_model=ConversationResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["conversations"]
)
def start_conversation(
    request: StartConversationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_or_create_conversation(db, current_user.id, request.participant_id)


@router.get("/conversations", response_model=list[ConversationSummary], tags=["conversations"])
def list_conversations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    conversations = get_user_conversations(db, current_user.id)
    last_messages = get_last_messages(db, [conversation.id for conversation in conversations])
    return [
        conversation_to_summary(conversation, last_messages.get(conversation.id))
        for conversation in conversations
    ]


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=list[MessageResponse],
    tags=["conversations"]
)
def list_messages(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return [message_to_response(m) for m in get_messages(db, conversation_id, current_user.id)]


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["conversations"]
)
def send_message(
    conversation_id: str,
    payload: MessageCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    connections: ConnectionRegistry = Depends(get_connections)
):
    # Proposals come from POST /exchanges and system messages from the worker
    if payload.message_type != MessageType.TEXT:
        raise ValidationError(f"{payload.message_type.value} messages cannot be posted directly")
    message = create_message(
        db,
        conversation_id,
        current_user.id,
        payload.content,
        payload.message_type.value,
        payload.metadata
    )
    response = message_to_response(message)
    schedule_fan_out(background_tasks, connections, message.conversation, response)
    return response


# Exchanges

@router.get("/exchanges", response_model=list[ExchangeResponse], tags=["exchanges"])
def list_exchanges(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return get_user_exchanges(db, current_user.id)


@router.post("/exchanges", response_model=ExchangeResponse, status_code=status.HTTP_201_CREATED, tags=["exchanges"])
def propose_exchange(
    payload: ExchangeCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    connections: ConnectionRegistry = Depends(get_connections)
):
    exchange = create_exchange(
        db,
        requester_id=current_user.id,
        provider_id=payload.provider_id,
        requester_skill_id=payload.requester_skill_id,
        provider_skill_id=payload.provider_skill_id,
        scheduled_at=payload.scheduled_at,
        notes=payload.notes,
    )

    conversation = get_or_create_conversation(db, current_user.id, exchange.provider_id)
    content = "Proposed a skill exchange"
    if payload.notes:
        content = f"{content}: {payload.notes}"
    message = create_message(
        db,
        conversation.id,
        current_user.id,
        content,
        MessageType.EXCHANGE_PROPOSAL.value,
        {"exchangeId": exchange.id, "status": exchange.status},
    )
    schedule_fan_out(background_tasks, connections, conversation, message_to_response(message))
    background_tasks.add_task(publish_event, "exchange.created", {
        "exchange_id": exchange.id,
        "requester_id": exchange.requester_id,
        "provider_id": exchange.provider_id,
        "conversation_id": conversation.id,
    })
    return exchange


@router.put("/exchanges/{exchange_id}/status", response_model=ExchangeResponse, tags=["exchanges"])
def change_exchange_status(
    exchange_id: str,
    payload: ExchangeStatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    exchange = update_exchange_status(db, exchange_id, current_user.id, payload.status.value)
    background_tasks.add_task(publish_event, "exchange.status_changed", {
        "exchange_id": exchange.id,
        "status": exchange.status,
        "actor_id": current_user.id,
        "requester_id": exchange.requester_id,
        "provider_id": exchange.provider_id,
    })
    return exchange


# Ratings

@router.get("/users/{user_id}/ratings", response_model=list[RatingResponse], tags=["ratings"])
def list_user_ratings(user_id: str, db: Session = Depends(get_db)):
    return get_user_ratings(db, user_id)


@router.post("/ratings", response_model=RatingResponse, status_code=status.HTTP_201_CREATED, tags=["ratings"])
def rate_user(
    payload: RatingCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return create_rating(
        db,
        rater_id=current_user.id,
        rated_user_id=payload.rated_user_id,
        rating=payload.rating,
        exchange_id=payload.exchange_id,
        review=payload.review,
    )


# Live channel

def authenticate_token(provider: AuthProvider, token: str) -> str:
    db = SessionLocal()
    try:
        return provider.authenticate(token, db).id
    finally:
        db.close()


@live_router.websocket("/ws")
async def live_updates(websocket: WebSocket):
    connections: ConnectionRegistry = websocket.app.state.connections
    provider: AuthProvider = websocket.app.state.auth_provider
    try:
        user_id = await run_in_threadpool(authenticate_token, provider, websocket.query_params.get("token"))
    except ServiceError as exc:
        logger.info("Rejected live connection: %s", exc.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    try:
        while True:
            received = await websocket.receive()
            if received["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(received.get("code", 1000))
            raw = received.get("text")
            if raw is None:
                await websocket.send_json({"type": "error", "detail": "Binary frames are not supported"})
                continue
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "detail": "Invalid JSON"})
                continue
            frame_type = frame.get("type") if isinstance(frame, dict) else None

            if frame_type == "join":
                claimed = frame.get("userId")
                if claimed is not None and str(claimed) != user_id:
                    await websocket.send_json({"type": "error", "detail": "userId does not match the authenticated user"})
                    continue
                connections.join(user_id, websocket)
                await websocket.send_json({"type": "joined", "userId": user_id})
            elif frame_type == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                logger.debug("Ignoring live frame of type %r from %s", frame_type, user_id)
    except WebSocketDisconnect:
        pass
    finally:
        connections.leave(websocket)
