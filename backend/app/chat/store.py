"""DuckDB-backed storage for chats and messages.

Database Schema:
    chats table:
        - id: Chat identifier
        - user_low / user_high: the two participants, sorted (unique pair)
        - users: JSON list of participants in creation order
        - latest_text / latest_sender: denormalised latest-message summary
        - created_at / updated_at (UTC)

    messages table:
        - seq: insertion sequence, the authoritative chronological order
        - id, chat_id, sender, text, message_type, seen, seen_at, ...
        - image / reactions / replied_message / link_preview: JSON text

Only the fields a mutation touches are written, so concurrent updates to
disjoint fields of one row (e.g. mark-seen vs. react) never clobber each
other.

Thread Safety:
    The DuckDB connection is used from the event loop thread only. Callers
    serialise read-modify-write sequences per message (see ChatService).
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import duckdb

from .schemas import (
    Chat,
    ImageRef,
    LatestMessage,
    LinkPreview,
    Message,
    MessageType,
    Reaction,
    RepliedMessage,
)

logger = logging.getLogger(__name__)

_CREATE_CHATS = """
CREATE TABLE IF NOT EXISTS chats (
    id            VARCHAR PRIMARY KEY,
    user_low      VARCHAR NOT NULL,
    user_high     VARCHAR NOT NULL,
    users         VARCHAR NOT NULL,
    latest_text   VARCHAR,
    latest_sender VARCHAR,
    created_at    TIMESTAMP NOT NULL,
    updated_at    TIMESTAMP NOT NULL,
    UNIQUE (user_low, user_high)
)
"""

_CREATE_MESSAGES = """
CREATE TABLE IF NOT EXISTS messages (
    seq             BIGINT DEFAULT nextval('messages_seq'),
    id              VARCHAR PRIMARY KEY,
    chat_id         VARCHAR NOT NULL,
    sender          VARCHAR NOT NULL,
    text            VARCHAR NOT NULL DEFAULT '',
    image           VARCHAR,
    message_type    VARCHAR NOT NULL DEFAULT 'text',
    seen            BOOLEAN NOT NULL DEFAULT FALSE,
    seen_at         TIMESTAMP,
    reactions       VARCHAR NOT NULL DEFAULT '[]',
    reply_to        VARCHAR,
    replied_message VARCHAR,
    forwarded_from  VARCHAR,
    is_edited       BOOLEAN NOT NULL DEFAULT FALSE,
    edited_at       TIMESTAMP,
    link_preview    VARCHAR,
    created_at      TIMESTAMP NOT NULL,
    updated_at      TIMESTAMP NOT NULL
)
"""

_CHAT_COLUMNS = "id, users, latest_text, latest_sender, created_at, updated_at"

_MESSAGE_COLUMNS = [
    "id", "chat_id", "sender", "text", "image", "message_type", "seen",
    "seen_at", "reactions", "reply_to", "replied_message", "forwarded_from",
    "is_edited", "edited_at", "link_preview", "created_at", "updated_at",
]

# Message attribute -> column, for partial updates
_UPDATABLE_FIELDS = {
    "text": "text",
    "image": "image",
    "messageType": "message_type",
    "seen": "seen",
    "seenAt": "seen_at",
    "reactions": "reactions",
    "isEdited": "is_edited",
    "editedAt": "edited_at",
    "linkPreview": "link_preview",
    "updatedAt": "updated_at",
}


def _dump_model(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value.model_dump_json()


def _dump_reactions(reactions: List[Reaction]) -> str:
    return json.dumps([r.model_dump() for r in reactions])


def _encode_field(name: str, value: Any) -> Any:
    if name == "reactions":
        return _dump_reactions(value or [])
    if name in ("image", "linkPreview"):
        return _dump_model(value)
    if name == "messageType":
        return MessageType(value).value
    return value


class ChatStore:
    """Chats and messages persisted in an embedded DuckDB database."""

    _instance: Optional["ChatStore"] = None
    _default_db_path: str = "pulse_chat.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path or self._default_db_path
        self._conn = duckdb.connect(self._db_path)
        self._initialize_db()
        logger.info("[ChatStore] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "ChatStore":
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def close(self) -> None:
        self._conn.close()

    def _initialize_db(self) -> None:
        self._conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        self._conn.execute(_CREATE_CHATS)
        self._conn.execute(_CREATE_MESSAGES)
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id)"
        )

    # -----------------------------------------------------------------------
    # Chats
    # -----------------------------------------------------------------------

    def insert_chat(self, chat: Chat) -> Chat:
        low, high = sorted(chat.users)
        self._conn.execute(
            """
            INSERT INTO chats
              (id, user_low, user_high, users, latest_text, latest_sender,
               created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                chat.id, low, high, json.dumps(chat.users),
                chat.latestMessage.text if chat.latestMessage else None,
                chat.latestMessage.sender if chat.latestMessage else None,
                chat.createdAt, chat.updatedAt,
            ],
        )
        return chat

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        row = self._conn.execute(
            f"SELECT {_CHAT_COLUMNS} FROM chats WHERE id = ?", [chat_id]
        ).fetchone()
        return self._row_to_chat(row) if row else None

    def find_chat_by_users(self, user_a: str, user_b: str) -> Optional[Chat]:
        """Look up the chat for an unordered pair of users."""
        low, high = sorted([user_a, user_b])
        row = self._conn.execute(
            f"SELECT {_CHAT_COLUMNS} FROM chats WHERE user_low = ? AND user_high = ?",
            [low, high],
        ).fetchone()
        return self._row_to_chat(row) if row else None

    def list_chats_for_user(self, user_id: str) -> List[Chat]:
        rows = self._conn.execute(
            f"""
            SELECT {_CHAT_COLUMNS} FROM chats
            WHERE user_low = ? OR user_high = ?
            ORDER BY updated_at DESC
            """,
            [user_id, user_id],
        ).fetchall()
        return [self._row_to_chat(r) for r in rows]

    def update_latest_message(
        self,
        chat_id: str,
        latest: LatestMessage,
        updated_at: Optional[datetime] = None,
    ) -> None:
        """Overwrite the latest-message summary; bump updated_at when given."""
        if updated_at is None:
            self._conn.execute(
                "UPDATE chats SET latest_text = ?, latest_sender = ? WHERE id = ?",
                [latest.text, latest.sender, chat_id],
            )
        else:
            self._conn.execute(
                """
                UPDATE chats SET latest_text = ?, latest_sender = ?, updated_at = ?
                WHERE id = ?
                """,
                [latest.text, latest.sender, updated_at, chat_id],
            )

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def insert_message(self, message: Message) -> Message:
        self._conn.execute(
            f"""
            INSERT INTO messages ({", ".join(_MESSAGE_COLUMNS)})
            VALUES ({", ".join("?" for _ in _MESSAGE_COLUMNS)})
            """,
            [
                message.id, message.chatId, message.sender, message.text,
                _dump_model(message.image), message.messageType.value,
                message.seen, message.seenAt, _dump_reactions(message.reactions),
                message.replyTo, _dump_model(message.repliedMessage),
                message.forwardedFrom, message.isEdited, message.editedAt,
                _dump_model(message.linkPreview), message.createdAt,
                message.updatedAt,
            ],
        )
        return message

    def get_message(self, message_id: str) -> Optional[Message]:
        row = self._conn.execute(
            f"SELECT {', '.join(_MESSAGE_COLUMNS)} FROM messages WHERE id = ?",
            [message_id],
        ).fetchone()
        return self._row_to_message(row) if row else None

    def update_message(self, message_id: str, **fields: Any) -> Optional[Message]:
        """Write only the given fields of one message and return the fresh row."""
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise KeyError(f"Not updatable: {sorted(unknown)}")
        if fields:
            set_clause = ", ".join(f"{_UPDATABLE_FIELDS[k]} = ?" for k in fields)
            values = [_encode_field(k, v) for k, v in fields.items()] + [message_id]
            self._conn.execute(
                f"UPDATE messages SET {set_clause} WHERE id = ?", values
            )
        return self.get_message(message_id)

    def mark_seen(
        self, chat_id: str, viewer_id: str, seen_at: Optional[datetime]
    ) -> List[str]:
        """Flip every unseen message not sent by the viewer to seen.

        seen_at is written only when given. Returns the ids that changed.
        """
        if seen_at is None:
            rows = self._conn.execute(
                """
                UPDATE messages SET seen = TRUE
                WHERE chat_id = ? AND sender <> ? AND seen = FALSE
                RETURNING id
                """,
                [chat_id, viewer_id],
            ).fetchall()
        else:
            rows = self._conn.execute(
                """
                UPDATE messages SET seen = TRUE, seen_at = ?
                WHERE chat_id = ? AND sender <> ? AND seen = FALSE
                RETURNING id
                """,
                [seen_at, chat_id, viewer_id],
            ).fetchall()
        return [r[0] for r in rows]

    def count_unseen(self, chat_id: str, viewer_id: str) -> int:
        row = self._conn.execute(
            """
            SELECT COUNT(*) FROM messages
            WHERE chat_id = ? AND sender <> ? AND seen = FALSE
            """,
            [chat_id, viewer_id],
        ).fetchone()
        return int(row[0])

    def count_messages(self, chat_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM messages WHERE chat_id = ?", [chat_id]
        ).fetchone()
        return int(row[0])

    def list_messages(self, chat_id: str, skip: int = 0, limit: int = 50) -> List[Message]:
        """Return one page of messages, newest first."""
        rows = self._conn.execute(
            f"""
            SELECT {', '.join(_MESSAGE_COLUMNS)} FROM messages
            WHERE chat_id = ?
            ORDER BY seq DESC
            LIMIT ? OFFSET ?
            """,
            [chat_id, limit, skip],
        ).fetchall()
        return [self._row_to_message(r) for r in rows]

    def latest_message_id(self, chat_id: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT id FROM messages WHERE chat_id = ? ORDER BY seq DESC LIMIT 1",
            [chat_id],
        ).fetchone()
        return row[0] if row else None

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _row_to_chat(self, row) -> Chat:
        chat_id, users, latest_text, latest_sender, created_at, updated_at = row
        latest = None
        if latest_text is not None:
            latest = LatestMessage(text=latest_text, sender=latest_sender or "")
        return Chat(
            id=chat_id,
            users=json.loads(users),
            latestMessage=latest,
            createdAt=created_at,
            updatedAt=updated_at,
        )

    def _row_to_message(self, row) -> Message:
        d: Dict[str, Any] = dict(zip(_MESSAGE_COLUMNS, row))
        return Message(
            id=d["id"],
            chatId=d["chat_id"],
            sender=d["sender"],
            text=d["text"] or "",
            image=ImageRef.model_validate_json(d["image"]) if d["image"] else None,
            messageType=MessageType(d["message_type"]),
            seen=bool(d["seen"]),
            seenAt=d["seen_at"],
            reactions=[Reaction(**r) for r in json.loads(d["reactions"] or "[]")],
            replyTo=d["reply_to"],
            repliedMessage=(
                RepliedMessage.model_validate_json(d["replied_message"])
                if d["replied_message"] else None
            ),
            forwardedFrom=d["forwarded_from"],
            isEdited=bool(d["is_edited"]),
            editedAt=d["edited_at"],
            linkPreview=(
                LinkPreview.model_validate_json(d["link_preview"])
                if d["link_preview"] else None
            ),
            createdAt=d["created_at"],
            updatedAt=d["updated_at"],
        )
