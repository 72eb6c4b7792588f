# =============================================================================
# File: app/api/dependencies/messaging_deps.py
# Description: FastAPI dependencies for the messaging core and caller identity
# =============================================================================

from typing import Annotated, Any, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from app.config.logging_config import get_logger
from app.config.messaging_config import MessagingConfig, get_messaging_config
from app.messaging.ports import AuthorizationPort, ProfileLookupPort
from app.messaging.reactions import ReactionLedger
from app.messaging.reply_resolver import ReplyResolver
from app.messaging.store import MessageStore
from app.messaging.uploader import AttachmentUploader

log = get_logger("campus.api.dependencies.messaging")

USER_ID_HEADER = "X-User-Id"


def get_current_user_id(
        x_user_id: Annotated[Optional[str], Header(alias=USER_ID_HEADER)] = None,
) -> str:
    """
    Caller identity as asserted by the upstream gateway.

    Identity is not verified here; the gateway strips and re-sets the header.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {USER_ID_HEADER} header",
        )
    return user_id


def _require_state(request: Request, name: str, label: str) -> Any:
    component = getattr(request.app.state, name, None)
    if component is None:
        log.error(f"{label} not available - messaging startup incomplete")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} unavailable",
        )
    return component


def get_message_store(request: Request) -> MessageStore:
    return _require_state(request, "message_store", "Message store")


def get_reaction_ledger(request: Request) -> ReactionLedger:
    return _require_state(request, "reaction_ledger", "Reaction ledger")


def get_uploader(request: Request) -> AttachmentUploader:
    return _require_state(request, "uploader", "Attachment uploader")


def get_reply_resolver(request: Request) -> ReplyResolver:
    return _require_state(request, "reply_resolver", "Reply resolver")


def get_profiles(request: Request) -> ProfileLookupPort:
    return _require_state(request, "profiles", "Profile directory")


def get_authorization(request: Request) -> AuthorizationPort:
    return _require_state(request, "authorization", "Authorization")


def get_config(request: Request) -> MessagingConfig:
    return getattr(request.app.state, "messaging_config", None) or get_messaging_config()


CurrentUser = Annotated[str, Depends(get_current_user_id)]
Store = Annotated[MessageStore, Depends(get_message_store)]
Ledger = Annotated[ReactionLedger, Depends(get_reaction_ledger)]
Uploader = Annotated[AttachmentUploader, Depends(get_uploader)]
Resolver = Annotated[ReplyResolver, Depends(get_reply_resolver)]
Profiles = Annotated[ProfileLookupPort, Depends(get_profiles)]
Authorization = Annotated[AuthorizationPort, Depends(get_authorization)]
Config = Annotated[MessagingConfig, Depends(get_config)]
