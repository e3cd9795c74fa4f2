from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Boolean, JSON, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone
import enum
import uuid

Base = declarative_base()


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def pair_key(user_a_id: str, user_b_id: str) -> str:
    """Order-independent key for a pair of users."""
    low, high = sorted((user_a_id, user_b_id))
    return f"{low}:{high}"


class MessageType(str, enum.Enum):
    TEXT = "text"
    EXCHANGE_PROPOSAL = "exchange_proposal"
    SYSTEM = "system"


class ExchangeStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, index=True, nullable=True)
    password_hash = Column(String, nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    profile_image_url = Column(String(500), nullable=True)
    bio = Column(Text, nullable=True)
    title = Column(String(200), nullable=True)
    is_verified = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    skills = relationship("Skill", back_populates="user", cascade="all, delete-orphan")


class Skill(Base):
    __tablename__ = "skills"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(100), nullable=False, index=True)
    tags = Column(JSON, default=list)
    level = Column(String(50), nullable=False)  # beginner, intermediate, expert
    seeking = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="skills")


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    participant1_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    participant2_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # One row per unordered pair, see pair_key()
    pair_key = Column(String(80), unique=True, nullable=False)
    last_message_at = Column(DateTime(timezone=True), default=utcnow)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    participant1 = relationship("User", foreign_keys=[participant1_id])
    participant2 = relationship("User", foreign_keys=[participant2_id])
    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("participant1_id <> participant2_id", name="ck_conversations_distinct_participants"),
    )

    @property
    def participant_ids(self):
        return (self.participant1_id, self.participant2_id)

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participant_ids

    def other_participant(self, user_id: str) -> str:
        return self.participant2_id if self.participant1_id == user_id else self.participant1_id


class Message(Base):
    __tablename__ = "messages"

    # Autoincrement id is the insertion order used to break created_at ties
    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    message_type = Column(String(50), nullable=False, default=MessageType.TEXT.value)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship("User")


class SkillExchange(Base):
    __tablename__ = "skill_exchanges"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    requester_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    requester_skill_id = Column(String(36), ForeignKey("skills.id"), nullable=True)
    provider_skill_id = Column(String(36), ForeignKey("skills.id"), nullable=True)
    status = Column(String(50), nullable=False, default=ExchangeStatus.PENDING.value)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    requester = relationship("User", foreign_keys=[requester_id])
    provider = relationship("User", foreign_keys=[provider_id])
    requester_skill = relationship("Skill", foreign_keys=[requester_skill_id])
    provider_skill = relationship("Skill", foreign_keys=[provider_skill_id])


class UserRating(Base):
    __tablename__ = "user_ratings"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    rater_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    rated_user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    exchange_id = Column(String(36), ForeignKey("skill_exchanges.id"), nullable=True)
    rating = Column(Integer, nullable=False)
    review = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    rater = relationship("User", foreign_keys=[rater_id])
    rated_user = relationship("User", foreign_keys=[rated_user_id])
    exchange = relationship("SkillExchange")

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_user_ratings_rating_range"),
    )
