from pydantic import BaseModel, EmailStr, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Any, Dict
from datetime import datetime
from skillswap.models import MessageType, ExchangeStatus


class CamelModel(BaseModel):
    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel


class UserPublic(CamelModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    title: Optional[str] = None
    bio: Optional[str] = None
    is_verified: bool = False


class UserResponse(UserPublic):
    email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserSignup(CamelModel):
    email: EmailStr
    password: str = Field(min_length=6)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)


class UserLogin(CamelModel):
    email: EmailStr
    password: str


class TokenResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class StartConversationRequest(CamelModel):
    participant_id: str = Field(min_length=1)


class MessageCreate(CamelModel):
    content: str
    message_type: MessageType = MessageType.TEXT
    metadata: Optional[Dict[str, Any]] = None


class MessageResponse(CamelModel):
    id: int
    conversation_id: str
    sender_id: str
    content: str
    message_type: str
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
    sender: Optional[UserPublic] = None


class ConversationResponse(CamelModel):
    id: str
    participant1_id: str
    participant2_id: str
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ConversationSummary(ConversationResponse):
    participant1: Optional[UserPublic] = None
    participant2: Optional[UserPublic] = None
    last_message: Optional[MessageResponse] = None


class ExchangeCreate(CamelModel):
    provider_id: str = Field(min_length=1)
    requester_skill_id: Optional[str] = None
    provider_skill_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    notes: Optional[str] = None


class ExchangeStatusUpdate(CamelModel):
    status: ExchangeStatus


class SkillSummary(CamelModel):
    id: str
    title: str
    category: str
    level: str


class ExchangeResponse(CamelModel):
    id: str
    requester_id: str
    provider_id: str
    requester_skill_id: Optional[str] = None
    provider_skill_id: Optional[str] = None
    status: str
    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    requester: Optional[UserPublic] = None
    provider: Optional[UserPublic] = None
    requester_skill: Optional[SkillSummary] = None
    provider_skill: Optional[SkillSummary] = None


class RatingCreate(CamelModel):
    rated_user_id: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    exchange_id: Optional[str] = None
    review: Optional[str] = None


class RatingResponse(CamelModel):
    id: str
    rater_id: str
    rated_user_id: str
    exchange_id: Optional[str] = None
    rating: int
    review: Optional[str] = None
    created_at: Optional[datetime] = None
    rater: Optional[UserPublic] = None


def message_to_response(message) -> MessageResponse:
    # Built by hand: the ORM keeps the metadata column under "meta"
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        content=message.content,
        message_type=message.message_type,
        metadata=message.meta,
        created_at=message.created_at,
        sender=UserPublic.model_validate(message.sender) if message.sender else None,
    )


def conversation_to_summary(conversation, last_message=None) -> ConversationSummary:
    return ConversationSummary(
        id=conversation.id,
        participant1_id=conversation.participant1_id,
        participant2_id=conversation.participant2_id,
        last_message_at=conversation.last_message_at,
        created_at=conversation.created_at,
        participant1=UserPublic.model_validate(conversation.participant1) if conversation.participant1 else None,
        participant2=UserPublic.model_validate(conversation.participant2) if conversation.participant2 else None,
        last_message=message_to_response(last_message) if last_message else None,
    )
