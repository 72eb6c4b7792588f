# =============================================================================
# File: app/api/routers/messages_router.py
# Description: REST endpoints for scopes, messages, reactions and uploads.
#              Domain errors propagate to the handlers in app/core/exceptions.py
# =============================================================================

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

from fastapi import APIRouter, File, Query, Response, UploadFile, status

from app.api.dependencies.messaging_deps import (
    Authorization,
    Config,
    CurrentUser,
    Ledger,
    Profiles,
    Resolver,
    Store,
    Uploader,
)
from app.api.models.message_api_models import (
    DeleteMessageResponse,
    MessagePage,
    MessageView,
    ReactionRequest,
    ReactionResponse,
    ReactionSummaryResponse,
    RegisterScopeRequest,
    ReplyPreviewView,
    ScopeResponse,
    SealMessageRequest,
    SendMessageRequest,
    UploadResponse,
    enrich,
)
from app.messaging.enums import ScopeAction
from app.messaging.exceptions import MessageNotFoundError, NotScopeMemberError, StoreUnavailableError
from app.messaging.models import Message, NewMessage
from app.messaging.ports import AuthorizationPort, ProfileLookupPort
from app.messaging.value_objects import AttachmentBlob, AuthorProfile
from app.utils.file_utils import format_file_size

log = logging.getLogger("campus.api.messages")

router = APIRouter()


# =============================================================================
# Helpers
# =============================================================================

async def _lookup_profiles(profiles: ProfileLookupPort, user_ids: Set[str]) -> Dict[str, AuthorProfile]:
    """Profile lookup never fails a read; missing authors render as Unknown."""
    if not user_ids:
        return {}
    try:
        return await profiles.lookup(user_ids)
    except Exception as e:
        log.warning(f"Profile lookup failed for {len(user_ids)} author(s): {e}")
        return {}


async def _readable_message(
        store: Store, authorization: AuthorizationPort, message_id: str, user_id: str
) -> Message:
    message = await store.get(message_id)
    if message is None or not message.sealed:
        raise MessageNotFoundError(message_id)
    if not await authorization.is_allowed(user_id, message.scope_id, ScopeAction.READ):
        raise NotScopeMemberError(user_id, message.scope_id, ScopeAction.READ.value)
    return message


async def _views(
        messages: List[Message],
        user_id: str,
        ledger: Ledger,
        resolver: Resolver,
        profiles: ProfileLookupPort,
) -> List[MessageView]:
    if not messages:
        return []
    summaries = await ledger.summaries([m.id for m in messages], user_id)
    replies = await resolver.resolve_many(m.reply_to_id for m in messages if m.reply_to_id)
    authors = await _lookup_profiles(profiles, {m.author_id for m in messages})
    return enrich(messages, authors, summaries, replies)


# =============================================================================
# Scope Endpoints
# =============================================================================

@router.post("/scopes", response_model=ScopeResponse, status_code=status.HTTP_201_CREATED)
async def register_scope(
        request: RegisterScopeRequest,
        current_user: CurrentUser,
        store: Store,
):
    """Register a scope. Registering an existing scope again is a no-op."""
    await store.register_scope(request.scope_id, request.kind)
    log.info(f"Scope {request.scope_id} registered by {current_user}")
    return ScopeResponse(scope_id=request.scope_id, kind=request.kind)


@router.get("/scopes/{scope_id}/messages", response_model=MessagePage)
async def list_messages(
        scope_id: str,
        current_user: CurrentUser,
        store: Store,
        ledger: Ledger,
        resolver: Resolver,
        profiles: Profiles,
        config: Config,
        limit: Optional[int] = Query(None, ge=1, description="Page size, capped by configuration"),
        before: Optional[str] = Query(None, description="Snowflake id of the oldest message already held"),
):
    """
    Newest page of a scope, oldest to newest.

    Cursor pagination by Snowflake id: pages never overlap and do not shift
    when new messages arrive.
    """
    messages = await store.fetch_recent(scope_id, limit=limit, before=before, viewer_id=current_user)
    page_size = max(1, min(limit or config.default_page_size, config.max_page_size))
    views = await _views(messages, current_user, ledger, resolver, profiles)
    next_before = messages[0].id if len(messages) >= page_size else None
    return MessagePage(scope_id=scope_id, messages=views, next_before=next_before)


@router.post("/scopes/{scope_id}/messages", response_model=MessageView, status_code=status.HTTP_201_CREATED)
async def send_message(
        scope_id: str,
        request: SendMessageRequest,
        current_user: CurrentUser,
        store: Store,
        ledger: Ledger,
        resolver: Resolver,
        profiles: Profiles,
):
    """
    Append a message.

    Server assigns the Snowflake id and timestamp. Resending the same
    submission_id returns the original message instead of a duplicate.
    """
    new = NewMessage(
        scope_id=scope_id,
        author_id=current_user,
        body=request.body,
        attachments=tuple(a.to_attachment() for a in request.attachments),
        reply_to_id=request.reply_to_id,
        submission_id=request.submission_id,
        session_id=request.session_id,
        session_seq=request.seq,
        awaiting_attachments=request.awaiting_attachments,
    )
    message = await store.append(new)
    views = await _views([message], current_user, ledger, resolver, profiles)
    return views[0]


@router.post("/scopes/{scope_id}/uploads", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
        scope_id: str,
        current_user: CurrentUser,
        store: Store,
        uploader: Uploader,
        authorization: Authorization,
        file: UploadFile = File(...),
        duration: Optional[float] = Query(None, ge=0, description="Video duration in seconds"),
):
    """
    Store one attachment under the scope's storage prefix.
    The returned attachment goes into SendMessageRequest.attachments or /seal.
    """
    scope_kind = await store.get_scope_kind(scope_id)
    if not await authorization.is_allowed(current_user, scope_id, ScopeAction.APPEND):
        raise NotScopeMemberError(current_user, scope_id, ScopeAction.APPEND.value)

    content = await file.read()
    blob = AttachmentBlob(
        content=content,
        content_type=file.content_type or "application/octet-stream",
        filename=file.filename or "upload",
        duration=duration,
    )
    attachment = await uploader.upload(scope_id, scope_kind, blob)
    log.info(f"[UPLOAD] {current_user} stored {attachment.filename} in {scope_id}")
    return UploadResponse(attachment=attachment, size_label=format_file_size(attachment.size))


# =============================================================================
# Message Endpoints
# =============================================================================

@router.post("/messages/{message_id}/seal", response_model=MessageView)
async def seal_message(
        message_id: str,
        request: SealMessageRequest,
        current_user: CurrentUser,
        store: Store,
        ledger: Ledger,
        resolver: Resolver,
        profiles: Profiles,
):
    """Attach uploaded media to a reserved message, making it visible."""
    message = await store.seal(message_id, current_user, [a.to_attachment() for a in request.attachments])
    views = await _views([message], current_user, ledger, resolver, profiles)
    return views[0]


@router.post("/messages/{message_id}/abandon", status_code=status.HTTP_204_NO_CONTENT)
async def abandon_message(
        message_id: str,
        current_user: CurrentUser,
        store: Store,
):
    """Drop a reservation whose attachments failed to upload."""
    await store.abandon(message_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/messages/{message_id}", response_model=DeleteMessageResponse)
async def delete_message(
        message_id: str,
        current_user: CurrentUser,
        store: Store,
        ledger: Ledger,
        hard: bool = Query(False, description="Moderation removal; requires the moderate permission"),
):
    """Soft delete (author) or hard delete (moderator)."""
    if hard:
        await store.hard_delete(message_id, current_user)
        try:
            await ledger.purge_message(message_id)
        except StoreUnavailableError as e:
            # The message itself is already purged
            log.warning(f"[HARD_DELETE] Reactions of {message_id} not purged: {e}")
    else:
        await store.soft_delete(message_id, current_user)
    return DeleteMessageResponse(message_id=message_id, hard=hard)


@router.get("/messages/{message_id}/reply-preview", response_model=Optional[ReplyPreviewView])
async def get_reply_preview(
        message_id: str,
        current_user: CurrentUser,
        store: Store,
        resolver: Resolver,
        authorization: Authorization,
):
    """Preview of the message this one replies to; null when it is not a reply."""
    message = await _readable_message(store, authorization, message_id, current_user)
    resolution = await resolver.resolve_preview(message)
    if resolution is None:
        return None
    return ReplyPreviewView.from_resolution(resolution)


# =============================================================================
# Reaction Endpoints
# =============================================================================

@router.post("/messages/{message_id}/reactions", response_model=ReactionResponse)
async def react(
        message_id: str,
        request: ReactionRequest,
        current_user: CurrentUser,
        ledger: Ledger,
):
    """
    Toggle (no `active`) or set (explicit `active`) the caller's reaction.
    Clients that retry should send `active` so a retry cannot flip twice.
    """
    if request.active is None:
        state = await ledger.toggle(message_id, current_user, request.kind)
    else:
        state = await ledger.set_reaction(message_id, current_user, request.kind, request.active)
    return ReactionResponse.from_state(message_id, request.kind, state)


@router.get("/messages/{message_id}/reactions", response_model=ReactionSummaryResponse)
async def get_reactions(
        message_id: str,
        current_user: CurrentUser,
        store: Store,
        ledger: Ledger,
        authorization: Authorization,
):
    await _readable_message(store, authorization, message_id, current_user)
    summary = await ledger.summary(message_id, current_user)
    return ReactionSummaryResponse.from_summary(summary)
