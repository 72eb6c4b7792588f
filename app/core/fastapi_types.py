# =============================================================================
# File: app/core/fastapi_types.py
# Description: FastAPI subclass with a typed AppState and a readiness check
#              for the messaging components startup wires onto it
# =============================================================================

from __future__ import annotations
from typing import TYPE_CHECKING, List

from fastapi import FastAPI as _FastAPI

if TYPE_CHECKING:
    from app.core.app_state import AppState

MESSAGING_COMPONENTS = (
    "message_store",
    "broadcaster",
    "reaction_ledger",
    "uploader",
    "reply_resolver",
    "authorization",
    "profiles",
)


class FastAPI(_FastAPI):
    """FastAPI whose state attribute is typed as the messaging AppState"""
    state: AppState

    def missing_components(self, *names: str) -> List[str]:
        """Names of messaging components not yet on app.state (all by default)."""
        return [name for name in names or MESSAGING_COMPONENTS if getattr(self.state, name, None) is None]
