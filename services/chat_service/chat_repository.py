"""
Chat repository - document store for chats.

Each chat is stored whole as one JSON document keyed by its id, the same
shape a document database collection would hold. Backed by SQLite through
aiosqlite so the event loop never blocks on disk I/O.
"""

import asyncio
import json
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiosqlite
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from services.chat_service.models import Chat, ContentType, Message, Role
from services.errors import PersistenceError
from utils.logging_config import get_logger


class MessageDocument(BaseModel):
    """Stored shape of a message"""
    id: str
    role: Role
    content: str
    timestamp: datetime
    content_type: ContentType = ContentType.TEXT
    file_urls: Optional[List[str]] = None
    file_names: Optional[List[str]] = None
    image_url: Optional[str] = None

    @model_validator(mode="after")
    def _aligned_attachments(self) -> 'MessageDocument':
        if len(self.file_urls or []) != len(self.file_names or []):
            raise ValueError("file_urls and file_names must have the same length")
        return self

    def to_message(self) -> Message:
        return Message(
            id=self.id,
            role=self.role,
            content=self.content,
            created_at=self.timestamp,
            file_urls=self.file_urls,
            file_names=self.file_names,
            content_type=self.content_type,
            image_url=self.image_url,
        )


class ChatDocument(BaseModel):
    """Stored shape of a chat"""
    id: str = Field(alias="_id")
    title: str
    model_id: str
    messages: List[MessageDocument] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    temporary: bool = False

    def to_chat(self) -> Chat:
        return Chat(
            id=self.id,
            title=self.title,
            model_id=self.model_id,
            messages=[message.to_message() for message in self.messages],
            created_at=self.created_at,
            updated_at=self.updated_at,
            temporary=self.temporary,
        )


class ChatRepository:
    """
    Async document store for chat snapshots.
    The connection is opened lazily once and reused.
    """

    def __init__(self, db_path: str = "data/chats.db", collection_name: str = "chats"):
        """
        Initialize chat repository

        Args:
            db_path: Path to SQLite database file
            collection_name: Table holding the chat documents
        """
        if not collection_name.isidentifier():
            raise ValueError(f"Invalid collection name: {collection_name!r}")

        self.logger = get_logger(__name__)
        self.db_path = db_path
        self.collection_name = collection_name
        self._conn: Optional[aiosqlite.Connection] = None
        self._init_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        """Open the database and create the collection table (idempotent)"""
        async with self._init_lock:
            if self._conn is not None:
                return

            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            try:
                conn = await aiosqlite.connect(self.db_path)
                await conn.execute(f'''
                    CREATE TABLE IF NOT EXISTS {self.collection_name} (
                        id TEXT PRIMARY KEY,
                        document TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                ''')
                await conn.execute(f'''
                    CREATE INDEX IF NOT EXISTS idx_{self.collection_name}_updated_at
                    ON {self.collection_name} (updated_at)
                ''')
                await conn.commit()
            except aiosqlite.Error as e:
                raise PersistenceError(f"Could not open chat store at {self.db_path}: {e}") from e

            self._conn = conn
            self.logger.info(f"Chat store initialized at {self.db_path}")

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def upsert(self, document: Dict[str, Any]) -> None:
        """Create or replace the document stored under document["_id"]"""
        conn = await self._connection()
        try:
            await conn.execute(
                f'''
                INSERT INTO {self.collection_name} (id, document, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    document = excluded.document,
                    updated_at = excluded.updated_at
                ''',
                (document["_id"], json.dumps(document, ensure_ascii=False), document["updated_at"]),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not save chat {document['_id']}: {e}") from e

    async def delete(self, chat_id: str) -> bool:
        """Delete a document; True if one was removed"""
        conn = await self._connection()
        try:
            cursor = await conn.execute(
                f"DELETE FROM {self.collection_name} WHERE id = ?", (chat_id,)
            )
            await conn.commit()
            return cursor.rowcount > 0
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not delete chat {chat_id}: {e}") from e

    async def find_all(self) -> List[Chat]:
        """Load every stored chat, most recently updated first"""
        conn = await self._connection()
        try:
            async with conn.execute(
                f"SELECT id, document FROM {self.collection_name} ORDER BY updated_at DESC"
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not load chats: {e}") from e

        chats = []
        for chat_id, raw in rows:
            try:
                chats.append(ChatDocument.model_validate(json.loads(raw)).to_chat())
            except (ValueError, PydanticValidationError) as e:
                # Skip corrupt documents rather than losing the whole load
                self.logger.warning(f"Skipping unreadable chat document {chat_id}: {e}")
        return chats

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            await self.connect()
        return self._conn
