"""
SQLite storage for turn version histories.

Versions and metadata are stored as JSON columns; every call opens its
own connection so each write is atomic on its own.
"""

import json
import logging
import os
from datetime import datetime
from typing import Optional

import aiosqlite

from domain.entities.bot_response import BotResponse, LatestTextRecord, ResponseMetadata
from domain.repositories.response_repository import ResponseRepository

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS bot_responses (
    chat_id INTEGER NOT NULL,
    message_id INTEGER NOT NULL,
    user_message_id INTEGER NOT NULL,
    current_version_index INTEGER NOT NULL DEFAULT 0,
    versions TEXT NOT NULL DEFAULT '[]',
    button_state TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (chat_id, message_id)
);
CREATE TABLE IF NOT EXISTS bot_messages (
    chat_id INTEGER NOT NULL,
    message_id INTEGER NOT NULL,
    reply_to_message_id INTEGER,
    text TEXT NOT NULL,
    image BLOB,
    model_parts TEXT,
    date TEXT NOT NULL,
    PRIMARY KEY (chat_id, message_id)
);
"""


class SQLiteResponseRepository(ResponseRepository):
    """aiosqlite implementation of ResponseRepository"""

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def init(self) -> None:
        """Create tables if they don't exist"""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(_SCHEMA)
            await db.commit()
        logger.info(f"Response storage ready at {self.db_path}")

    async def create_response(
        self,
        chat_id: int,
        message_id: int,
        user_message_id: int,
        metadata: ResponseMetadata,
    ) -> BotResponse:
        response = BotResponse(
            chat_id=chat_id,
            message_id=message_id,
            user_message_id=user_message_id,
            metadata=metadata,
        )
        await self.save_response(response)
        return response

    async def get_response(self, chat_id: int, message_id: int) -> Optional[BotResponse]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM bot_responses WHERE chat_id = ? AND message_id = ?",
                (chat_id, message_id),
            ) as cursor:
                row = await cursor.fetchone()
        return self._row_to_response(row) if row else None

    async def find_by_message_id(self, chat_id: int, message_id: int) -> Optional[BotResponse]:
        response = await self.get_response(chat_id, message_id)
        if response:
            return response

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM bot_responses WHERE chat_id = ? ORDER BY updated_at DESC",
                (chat_id,),
            ) as cursor:
                rows = await cursor.fetchall()

        for row in rows:
            candidate = self._row_to_response(row)
            if candidate.owns_message(message_id):
                return candidate
        return None

    async def save_response(self, response: BotResponse) -> None:
        record = response.to_record()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO bot_responses (
                    chat_id, message_id, user_message_id, current_version_index,
                    versions, button_state, metadata, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(chat_id, message_id) DO UPDATE SET
                    current_version_index = excluded.current_version_index,
                    versions = excluded.versions,
                    button_state = excluded.button_state,
                    metadata = excluded.metadata,
                    updated_at = excluded.updated_at
                """,
                (
                    record["chat_id"],
                    record["message_id"],
                    record["user_message_id"],
                    record["current_version_index"],
                    json.dumps(record["versions"]),
                    record["button_state"],
                    json.dumps(record["metadata"]),
                    record["created_at"],
                    record["updated_at"],
                ),
            )
            await db.commit()
        logger.debug(
            f"Saved response {response.chat_id}:{response.message_id} "
            f"({response.version_count} versions, {response.button_state.value})"
        )

    async def save_latest_text(self, record: LatestTextRecord) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO bot_messages (
                    chat_id, message_id, reply_to_message_id, text, image, model_parts, date
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.chat_id,
                    record.message_id,
                    record.reply_to_message_id,
                    record.text,
                    record.image,
                    json.dumps(record.model_parts) if record.model_parts is not None else None,
                    record.date.isoformat(),
                ),
            )
            await db.commit()

    async def get_latest_text(self, chat_id: int, message_id: int) -> Optional[LatestTextRecord]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM bot_messages WHERE chat_id = ? AND message_id = ?",
                (chat_id, message_id),
            ) as cursor:
                row = await cursor.fetchone()
        if not row:
            return None
        return LatestTextRecord(
            chat_id=row["chat_id"],
            message_id=row["message_id"],
            reply_to_message_id=row["reply_to_message_id"],
            text=row["text"],
            image=row["image"],
            model_parts=json.loads(row["model_parts"]) if row["model_parts"] else None,
            date=datetime.fromisoformat(row["date"]),
        )

    @staticmethod
    def _row_to_response(row) -> BotResponse:
        return BotResponse.from_record({
            "chat_id": row["chat_id"],
            "message_id": row["message_id"],
            "user_message_id": row["user_message_id"],
            "current_version_index": row["current_version_index"],
            "versions": json.loads(row["versions"]),
            "button_state": row["button_state"],
            "metadata": json.loads(row["metadata"]),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        })
