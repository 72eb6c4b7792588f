# =============================================================================
# File: app/infra/read_repos/message_pg_repo.py
# Description: PostgreSQL repositories for messages, reactions and profiles
#              (schema: app/database/messaging.sql)
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

import asyncpg

from app.common.exceptions.exceptions import ConflictError
from app.infra.persistence import pg_client
from app.messaging.enums import ReactionKind, ScopeKind
from app.messaging.exceptions import MessageNotFoundError, OutOfOrderSubmissionError
from app.messaging.models import Attachment, Message
from app.messaging.value_objects import AuthorProfile, MembershipChange, ReactionSummary

log = logging.getLogger("campus.infra.message_pg_repo")

_MESSAGE_COLUMNS = """
    id, scope_id, author_id, body, attachments, reply_to_id,
    created_at, submission_id, deleted_at, sealed
"""


def _row_to_message(row: asyncpg.Record) -> Message:
    return Message(
        id=str(row["id"]),
        scope_id=row["scope_id"],
        author_id=row["author_id"],
        body=row["body"],
        attachments=tuple(Attachment.model_validate(a) for a in row["attachments"] or ()),
        reply_to_id=str(row["reply_to_id"]) if row["reply_to_id"] is not None else None,
        created_at=row["created_at"],
        submission_id=row["submission_id"],
        deleted_at=row["deleted_at"],
        sealed=row["sealed"],
    )


def _attachments_json(attachments: Iterable[Attachment]) -> List[Dict[str, Any]]:
    return [a.model_dump(mode="json") for a in attachments]


class PostgresMessageRepository:
    """MessageRepository over the messages / scopes / session_seqs tables."""

    async def register_scope(self, scope_id: str, kind: ScopeKind) -> None:
        await pg_client.execute(
            """
            INSERT INTO scopes (id, kind) VALUES ($1, $2)
            ON CONFLICT (id) DO NOTHING
            """,
            scope_id, kind.value,
        )

    async def get_scope_kind(self, scope_id: str) -> Optional[ScopeKind]:
        kind = await pg_client.fetchval("SELECT kind FROM scopes WHERE id = $1", scope_id)
        return ScopeKind(kind) if kind is not None else None

    async def find_by_submission(self, author_id: str, submission_id: str) -> Optional[Message]:
        row = await pg_client.fetchrow(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE author_id = $1 AND submission_id = $2",
            author_id, submission_id,
        )
        return _row_to_message(row) if row else None

    async def get_session_seq(self, scope_id: str, session_id: str) -> int:
        value = await pg_client.fetchval(
            "SELECT last_seq FROM session_seqs WHERE scope_id = $1 AND session_id = $2",
            scope_id, session_id,
        )
        return value or 0

    async def insert(self, message: Message, session_id: Optional[str], session_seq: Optional[int]) -> None:
        """
        Insert the message and advance the session sequence in one
        transaction. The sequence only moves forward, even across instances.
        """
        async with pg_client.transaction() as conn:
            if session_id and session_seq is not None:
                advanced = await conn.fetchval(
                    """
                    INSERT INTO session_seqs (scope_id, session_id, last_seq)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (scope_id, session_id) DO UPDATE
                        SET last_seq = EXCLUDED.last_seq, updated_at = now()
                        WHERE session_seqs.last_seq < EXCLUDED.last_seq
                    RETURNING last_seq
                    """,
                    message.scope_id, session_id, session_seq,
                )
                if advanced is None:
                    last = await conn.fetchval(
                        "SELECT last_seq FROM session_seqs WHERE scope_id = $1 AND session_id = $2",
                        message.scope_id, session_id,
                    )
                    raise OutOfOrderSubmissionError(session_id, session_seq, last or 0)
            try:
                await conn.execute(
                    """
                    INSERT INTO messages (
                        id, scope_id, author_id, body, attachments, reply_to_id,
                        created_at, submission_id, sealed
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    """,
                    int(message.id), message.scope_id, message.author_id, message.body,
                    _attachments_json(message.attachments),
                    int(message.reply_to_id) if message.reply_to_id else None,
                    message.created_at, message.submission_id, message.sealed,
                )
            except asyncpg.UniqueViolationError as e:
                log.warning(f"[IDEMPOTENCY] Concurrent insert of submission {message.submission_id}: {e}")
                raise ConflictError(f"Submission {message.submission_id} was stored concurrently") from e

    async def get(self, message_id: str) -> Optional[Message]:
        row = await pg_client.fetchrow(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = $1", int(message_id)
        )
        return _row_to_message(row) if row else None

    async def get_many(self, message_ids: Iterable[str]) -> Dict[str, Message]:
        ids = [int(i) for i in message_ids]
        if not ids:
            return {}
        rows = await pg_client.fetch(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ANY($1::bigint[])", ids
        )
        return {str(row["id"]): _row_to_message(row) for row in rows}

    async def list_recent(self, scope_id: str, limit: int, before_id: Optional[str] = None) -> List[Message]:
        rows = await pg_client.fetch(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE scope_id = $1
              AND sealed AND deleted_at IS NULL
              AND ($2::bigint IS NULL OR id < $2::bigint)
            ORDER BY id DESC
            LIMIT $3
            """,
            scope_id, int(before_id) if before_id is not None else None, limit,
        )
        return [_row_to_message(row) for row in rows]

    async def seal(self, message_id: str, attachments: List[Attachment]) -> Optional[Message]:
        row = await pg_client.fetchrow(
            f"""
            UPDATE messages SET attachments = $2, sealed = TRUE
            WHERE id = $1 AND NOT sealed
            RETURNING {_MESSAGE_COLUMNS}
            """,
            int(message_id), _attachments_json(attachments),
        )
        return _row_to_message(row) if row else None

    async def mark_deleted(self, message_id: str, deleted_at: datetime) -> Optional[Message]:
        row = await pg_client.fetchrow(
            f"""
            UPDATE messages SET deleted_at = COALESCE(deleted_at, $2)
            WHERE id = $1
            RETURNING {_MESSAGE_COLUMNS}
            """,
            int(message_id), deleted_at,
        )
        return _row_to_message(row) if row else None

    async def purge(self, message_id: str) -> bool:
        # Reactions go with it (ON DELETE CASCADE)
        status = await pg_client.execute("DELETE FROM messages WHERE id = $1", int(message_id))
        return status.endswith(" 1")

    async def list_stale_reservations(self, older_than: datetime) -> List[Message]:
        rows = await pg_client.fetch(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE NOT sealed AND created_at < $1",
            older_than,
        )
        return [_row_to_message(row) for row in rows]


class PostgresReactionRepository:
    """
    ReactionRepository over message_reactions. The primary key
    (message_id, user_id, kind) is the set membership; the message row lock
    orders revisions per message.
    """

    async def set_membership(
            self, message_id: str, user_id: str, kind: ReactionKind, active: bool
    ) -> MembershipChange:
        mid = int(message_id)
        async with pg_client.transaction() as conn:
            revision = await conn.fetchval(
                "SELECT reaction_revision FROM messages WHERE id = $1 FOR UPDATE", mid
            )
            if revision is None:
                raise MessageNotFoundError(message_id)

            if active:
                status = await conn.execute(
                    """
                    INSERT INTO message_reactions (message_id, user_id, kind)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (message_id, user_id, kind) DO NOTHING
                    """,
                    mid, user_id, kind.value,
                )
            else:
                status = await conn.execute(
                    "DELETE FROM message_reactions WHERE message_id = $1 AND user_id = $2 AND kind = $3",
                    mid, user_id, kind.value,
                )
            changed = status.endswith(" 1")

            if changed:
                revision = await conn.fetchval(
                    """
                    UPDATE messages SET reaction_revision = reaction_revision + 1
                    WHERE id = $1 RETURNING reaction_revision
                    """,
                    mid,
                )
            count = await conn.fetchval(
                "SELECT count(*) FROM message_reactions WHERE message_id = $1 AND kind = $2",
                mid, kind.value,
            )

        return MembershipChange(active=active, count=count, changed=changed, revision=revision)

    async def get_state(self, message_id: str, user_id: str, kind: ReactionKind) -> MembershipChange:
        row = await pg_client.fetchrow(
            """
            SELECT m.reaction_revision AS revision,
                   count(r.user_id) AS n,
                   coalesce(bool_or(r.user_id = $2), FALSE) AS mine
            FROM messages m
            LEFT JOIN message_reactions r ON r.message_id = m.id AND r.kind = $3
            WHERE m.id = $1
            GROUP BY m.reaction_revision
            """,
            int(message_id), user_id, kind.value,
        )
        if row is None:
            raise MessageNotFoundError(message_id)
        return MembershipChange(active=row["mine"], count=row["n"], changed=False, revision=row["revision"])

    async def summarize(self, message_ids: Iterable[str], viewer_id: Optional[str]) -> Mapping[str, ReactionSummary]:
        ids = [int(i) for i in message_ids]
        if not ids:
            return {}
        rows = await pg_client.fetch(
            """
            SELECT r.message_id, r.kind, count(*) AS n,
                   coalesce(bool_or(r.user_id = $2), FALSE) AS mine,
                   m.reaction_revision AS revision
            FROM message_reactions r
            JOIN messages m ON m.id = r.message_id
            WHERE r.message_id = ANY($1::bigint[])
            GROUP BY r.message_id, r.kind, m.reaction_revision
            """,
            ids, viewer_id,
        )

        grouped: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            entry = grouped.setdefault(
                str(row["message_id"]), {"counts": {}, "mine": set(), "revision": row["revision"]}
            )
            kind = ReactionKind(row["kind"])
            entry["counts"][kind] = row["n"]
            if row["mine"]:
                entry["mine"].add(kind)

        return {
            mid: ReactionSummary(
                message_id=mid,
                counts=data["counts"],
                mine=frozenset(data["mine"]),
                revision=data["revision"],
            )
            for mid, data in grouped.items()
        }

    async def purge_message(self, message_id: str) -> None:
        await pg_client.execute("DELETE FROM message_reactions WHERE message_id = $1", int(message_id))


class PostgresProfileDirectory:
    """ProfileLookupPort over the profiles table"""

    async def lookup(self, user_ids: Set[str]) -> Dict[str, AuthorProfile]:
        if not user_ids:
            return {}
        rows = await pg_client.fetch(
            "SELECT user_id, display_name, avatar_url FROM profiles WHERE user_id = ANY($1::text[])",
            list(user_ids),
        )
        return {
            row["user_id"]: AuthorProfile(
                user_id=row["user_id"],
                display_name=row["display_name"],
                avatar_url=row["avatar_url"],
            )
            for row in rows
        }
