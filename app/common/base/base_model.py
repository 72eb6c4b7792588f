# =============================================================================
# File: app/common/base/base_model.py
# Description: Base Pydantic model for all scope events published by the
#              store and the reaction ledger
# =============================================================================

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Final, Dict, Any
from pydantic import BaseModel, Field, ConfigDict

_DEFAULT_EVENT_VERSION: Final[int] = 1


class BaseEvent(BaseModel):
    """
    Base Pydantic model for scope events.
    Ensures common metadata fields are present in every event.
    """
    event_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: str  # Overridden by Literal in specific event types
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = Field(default=_DEFAULT_EVENT_VERSION, description="Version of this event model's schema")

    model_config = ConfigDict(
        frozen=True,
        from_attributes=True,
        populate_by_name=True,
        extra='allow'
    )

    def to_dict_for_bus(self) -> Dict[str, Any]:
        """
        Serializes the event to a JSON-ready dictionary for the relay bus
        and WebSocket clients.
        """
        return self.model_dump(mode="json", by_alias=True)
