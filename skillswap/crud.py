from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import or_, and_, func
from skillswap.models import (
    User, Skill, Conversation, Message, SkillExchange, UserRating,
    MessageType, ExchangeStatus, pair_key, utcnow
)
from skillswap.errors import ValidationError, AuthorizationError, NotFoundError, ConflictError
from passlib.context import CryptContext
from typing import Optional
import hashlib
import logging

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# status -> statuses it may move to
EXCHANGE_TRANSITIONS = {
    ExchangeStatus.PENDING.value: {ExchangeStatus.ACCEPTED.value, ExchangeStatus.CANCELLED.value},
    ExchangeStatus.ACCEPTED.value: {ExchangeStatus.COMPLETED.value, ExchangeStatus.CANCELLED.value},
    ExchangeStatus.COMPLETED.value: set(),
    ExchangeStatus.CANCELLED.value: set(),
}


def _prehash_password(password: str) -> str:
    """
    Pre-hash the raw password using SHA-256 before passing it to bcrypt.
    This prevents bcrypt from failing on extremely long passwords.
    """
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def hash_password(password: str) -> str:
    return pwd_context.hash(_prehash_password(password))


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(_prehash_password(password), password_hash)


# Users

def get_user_by_id(db: Session, user_id: str):
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str):
    return db.query(User).filter(User.email == email).first()


def require_user(db: Session, user_id: str) -> User:
    user = get_user_by_id(db, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


def create_user(db: Session, email: str, password: str, first_name: str, last_name: str):
    if get_user_by_email(db, email):
        raise ValidationError("Email already registered")
    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        profile_image_url=f"https://api.dicebear.com/7.x/avataaars/svg?seed={email}",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def upsert_user(db: Session, user_id: str, **fields):
    """Insert the user or refresh the given profile fields of an existing row."""
    user = get_user_by_id(db, user_id)
    if user is None:
        user = User(id=user_id, **fields)
        db.add(user)
    else:
        for key, value in fields.items():
            if value is not None:
                setattr(user, key, value)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Email is already registered to another account") from exc
    db.refresh(user)
    return user


# Conversations

def find_conversation(db: Session, user_a_id: str, user_b_id: str):
    participant_filter = or_(
        and_(
            Conversation.participant1_id == user_a_id,
            Conversation.participant2_id == user_b_id
        ),
        and_(
            Conversation.participant1_id == user_b_id,
            Conversation.participant2_id == user_a_id
        )
    )
    return db.query(Conversation).filter(participant_filter).first()


def _insert_conversation(db: Session, user_a_id: str, user_b_id: str):
    conversation = Conversation(
        participant1_id=user_a_id,
        participant2_id=user_b_id,
        pair_key=pair_key(user_a_id, user_b_id),
    )
    db.add(conversation)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Conversation for this pair already exists") from exc
    db.refresh(conversation)
    return conversation


def get_or_create_conversation(db: Session, user_a_id: str, user_b_id: str):
    """
    Return the single conversation between two users, creating it on first contact.
    (a, b) and (b, a) resolve to the same row; a lost creation race retries the lookup once.
    """
    if not user_a_id or not user_b_id:
        raise ValidationError("Participant id is required")
    if user_a_id == user_b_id:
        raise ValidationError("Cannot start a conversation with yourself")

    conversation = find_conversation(db, user_a_id, user_b_id)
    if conversation:
        return conversation

    require_user(db, user_b_id)
    try:
        return _insert_conversation(db, user_a_id, user_b_id)
    except ConflictError:
        logger.info("Conversation race for %s/%s, reusing the winner", user_a_id, user_b_id)
        conversation = find_conversation(db, user_a_id, user_b_id)
        if conversation is None:
            raise
        return conversation


def get_conversation(db: Session, conversation_id: str):
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation:
        raise NotFoundError("Conversation not found")
    return conversation


def get_participant_conversation(db: Session, conversation_id: str, user_id: str):
    conversation = get_conversation(db, conversation_id)
    if not conversation.has_participant(user_id):
        raise AuthorizationError("You are not a participant of this conversation")
    return conversation


def get_last_messages(db: Session, conversation_ids):
    """Latest message of each conversation in one query, keyed by conversation id."""
    conversation_ids = list(conversation_ids)
    if not conversation_ids:
        return {}
    ranked = (
        db.query(
            Message.id.label("id"),
            func.row_number().over(
                partition_by=Message.conversation_id,
                order_by=(Message.created_at.desc(), Message.id.desc())
            ).label("position")
        )
        .filter(Message.conversation_id.in_(conversation_ids))
        .subquery()
    )
    latest = (
        db.query(Message)
        .options(joinedload(Message.sender))
        .join(ranked, Message.id == ranked.c.id)
        .filter(ranked.c.position == 1)
        .all()
    )
    return {message.conversation_id: message for message in latest}


def get_user_conversations(db: Session, user_id: str):
    return (
        db.query(Conversation)
        .options(joinedload(Conversation.participant1), joinedload(Conversation.participant2))
        .filter(
            or_(
                Conversation.participant1_id == user_id,
                Conversation.participant2_id == user_id
            )
        )
        .order_by(Conversation.last_message_at.desc(), Conversation.created_at.desc())
        .all()
    )


# Messages

def create_message(
    db: Session,
    conversation_id: str,
    sender_id: str,
    content: str,
    message_type: str = MessageType.TEXT.value,
    metadata: Optional[dict] = None,
):
    if content is None or not content.strip():
        raise ValidationError("Message content cannot be empty")
    try:
        message_type = MessageType(message_type).value
    except ValueError:
        raise ValidationError(f"Unknown message type: {message_type}")

    conversation = get_conversation(db, conversation_id)
    if not conversation.has_participant(sender_id):
        raise AuthorizationError("Sender is not a participant of this conversation")

    created_at = utcnow()
    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        content=content,
        message_type=message_type,
        meta=metadata,
        created_at=created_at,
    )
    db.add(message)
    conversation.last_message_at = created_at
    db.commit()
    db.refresh(message)
    return message


def get_messages(db: Session, conversation_id: str, viewer_id: str):
    """Every message of the conversation, oldest first; the viewer must be a participant."""
    get_participant_conversation(db, conversation_id, viewer_id)
    return (
        db.query(Message)
        .options(joinedload(Message.sender))
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


# Exchanges

def get_skill(db: Session, skill_id: str):
    skill = db.query(Skill).filter(Skill.id == skill_id).first()
    if not skill:
        raise NotFoundError(f"Skill {skill_id} not found")
    return skill


def create_exchange(
    db: Session,
    requester_id: str,
    provider_id: str,
    requester_skill_id: Optional[str] = None,
    provider_skill_id: Optional[str] = None,
    scheduled_at=None,
    notes: Optional[str] = None,
):
    if requester_id == provider_id:
        raise ValidationError("Cannot propose an exchange to yourself")
    require_user(db, provider_id)
    if requester_skill_id and get_skill(db, requester_skill_id).user_id != requester_id:
        raise ValidationError("Requester skill does not belong to the requester")
    if provider_skill_id and get_skill(db, provider_skill_id).user_id != provider_id:
        raise ValidationError("Provider skill does not belong to the provider")

    exchange = SkillExchange(
        requester_id=requester_id,
        provider_id=provider_id,
        requester_skill_id=requester_skill_id,
        provider_skill_id=provider_skill_id,
        scheduled_at=scheduled_at,
        notes=notes,
        status=ExchangeStatus.PENDING.value,
    )
    db.add(exchange)
    db.commit()
    db.refresh(exchange)
    return exchange


def get_exchange(db: Session, exchange_id: str):
    exchange = db.query(SkillExchange).filter(SkillExchange.id == exchange_id).first()
    if not exchange:
        raise NotFoundError("Exchange not found")
    return exchange


def get_user_exchanges(db: Session, user_id: str):
    return (
        db.query(SkillExchange)
        .options(
            joinedload(SkillExchange.requester),
            joinedload(SkillExchange.provider),
            joinedload(SkillExchange.requester_skill),
            joinedload(SkillExchange.provider_skill),
        )
        .filter(
            or_(
                SkillExchange.requester_id == user_id,
                SkillExchange.provider_id == user_id
            )
        )
        .order_by(SkillExchange.created_at.desc())
        .all()
    )


def update_exchange_status(db: Session, exchange_id: str, actor_id: str, status: str):
    exchange = get_exchange(db, exchange_id)
    if actor_id not in (exchange.requester_id, exchange.provider_id):
        raise AuthorizationError("You are not a party to this exchange")

    status = ExchangeStatus(status).value
    if status not in EXCHANGE_TRANSITIONS[exchange.status]:
        raise ValidationError(f"Cannot move exchange from {exchange.status} to {status}")
    if status == ExchangeStatus.ACCEPTED.value and actor_id != exchange.provider_id:
        raise AuthorizationError("Only the provider can accept an exchange")

    exchange.status = status
    if status == ExchangeStatus.COMPLETED.value:
        exchange.completed_at = utcnow()
    db.commit()
    db.refresh(exchange)
    return exchange


# Ratings

def create_rating(
    db: Session,
    rater_id: str,
    rated_user_id: str,
    rating: int,
    exchange_id: Optional[str] = None,
    review: Optional[str] = None,
):
    if rater_id == rated_user_id:
        raise ValidationError("Cannot rate yourself")
    if rating is None or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")
    require_user(db, rated_user_id)

    if exchange_id:
        exchange = get_exchange(db, exchange_id)
        parties = {exchange.requester_id, exchange.provider_id}
        if rater_id not in parties:
            raise AuthorizationError("You are not a party to this exchange")
        if rated_user_id not in parties:
            raise ValidationError("Rated user is not a party to this exchange")
        if exchange.status != ExchangeStatus.COMPLETED.value:
            raise ValidationError("Only completed exchanges can be rated")

    user_rating = UserRating(
        rater_id=rater_id,
        rated_user_id=rated_user_id,
        exchange_id=exchange_id,
        rating=rating,
        review=review,
    )
    db.add(user_rating)
    db.commit()
    db.refresh(user_rating)
    return user_rating


def get_user_ratings(db: Session, user_id: str):
    require_user(db, user_id)
    return (
        db.query(UserRating)
        .options(joinedload(UserRating.rater))
        .filter(UserRating.rated_user_id == user_id)
        .order_by(UserRating.created_at.desc())
        .all()
    )
