"""
Chat service data models for chats, messages and attachments.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Dict, Optional, Any, Tuple
import uuid


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Message:
    """Individual message in a chat; never edited once created"""
    role: Role
    content: str
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=datetime.now)
    file_urls: Optional[Tuple[str, ...]] = None
    file_names: Optional[Tuple[str, ...]] = None
    content_type: ContentType = ContentType.TEXT
    image_url: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "role", Role(self.role))
        object.__setattr__(self, "content_type", ContentType(self.content_type))

        # Empty attachment lists are stored as absent
        urls = tuple(self.file_urls) if self.file_urls else None
        names = tuple(self.file_names) if self.file_names else None
        if len(urls or ()) != len(names or ()):
            raise ValueError(
                f"Attachment urls and names must be index-aligned "
                f"({len(urls or ())} urls, {len(names or ())} names)"
            )
        object.__setattr__(self, "file_urls", urls)
        object.__setattr__(self, "file_names", names)

        if self.content_type is ContentType.IMAGE and not self.image_url:
            raise ValueError("Image messages need an image_url")

    @property
    def has_attachments(self) -> bool:
        return bool(self.file_urls)

    def to_document(self) -> Dict[str, Any]:
        document = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.created_at.isoformat(),
            "content_type": self.content_type.value,
        }
        if self.file_urls:
            document["file_urls"] = list(self.file_urls)
            document["file_names"] = list(self.file_names)
        if self.image_url:
            document["image_url"] = self.image_url
        return document


def create_message(
    role: Role,
    content: str,
    file_urls: Optional[List[str]] = None,
    file_names: Optional[List[str]] = None,
) -> Message:
    """Build a new text message stamped with the current time"""
    return Message(role=role, content=content, file_urls=file_urls, file_names=file_names)


def create_image_message(content: str, image_url: str) -> Message:
    """Build an assistant message that renders an image"""
    return Message(
        role=Role.ASSISTANT,
        content=content,
        content_type=ContentType.IMAGE,
        image_url=image_url,
    )


@dataclass
class Chat:
    """Chat containing ordered messages and metadata"""
    id: str
    title: str
    model_id: str
    messages: List[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None
    temporary: bool = False

    def __post_init__(self):
        if self.updated_at is None or self.updated_at < self.created_at:
            self.updated_at = self.created_at

    @property
    def is_empty(self) -> bool:
        return not self.messages

    def to_document(self) -> Dict[str, Any]:
        """Snapshot the chat as a store document keyed by its id"""
        return {
            "_id": self.id,
            "title": self.title,
            "model_id": self.model_id,
            "messages": [message.to_document() for message in self.messages],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "temporary": self.temporary,
        }


@dataclass(frozen=True)
class Attachment:
    """A validated upload: raw bytes plus the declared media type"""
    name: str
    media_type: str
    data: bytes

    def __post_init__(self):
        object.__setattr__(self, "media_type", self.media_type.strip().lower())

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith("image/")


@dataclass
class ChatSummary:
    """Summary of a chat for listing/navigation"""
    chat_id: str
    title: str
    message_count: int
    last_activity: datetime
    created_at: datetime
    temporary: bool = False
    preview_text: Optional[str] = None

    @classmethod
    def from_chat(cls, chat: Chat) -> 'ChatSummary':
        preview = None
        user_messages = [m for m in chat.messages if m.role is Role.USER]
        if user_messages:
            content = user_messages[-1].content
            # Truncate to reasonable preview length
            preview = content[:100] + "..." if len(content) > 100 else content
        return cls(
            chat_id=chat.id,
            title=chat.title,
            message_count=len(chat.messages),
            last_activity=chat.updated_at,
            created_at=chat.created_at,
            temporary=chat.temporary,
            preview_text=preview,
        )
