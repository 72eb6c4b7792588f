# =============================================================================
# File: tests/fakes/recording_listener.py
# Description: ScopeListener that records every notification
# =============================================================================

from __future__ import annotations

from typing import Any, List, Tuple

from app.messaging.reconciliation import ScopeListener


class RecordingListener(ScopeListener):
    """events is a list of (hook name, args) in call order."""

    def __init__(self):
        self.events: List[Tuple[str, tuple]] = []

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, hook: str) -> List[tuple]:
        return [args for name, args in self.events if name == hook]

    def clear(self) -> None:
        self.events.clear()

    def _record(self, hook: str, *args: Any) -> None:
        self.events.append((hook, args))

    def on_scope_snapshot(self, entries):
        self._record("on_scope_snapshot", entries)

    def on_message_inserted(self, entry):
        self._record("on_message_inserted", entry)

    def on_message_confirmed(self, handle, entry):
        self._record("on_message_confirmed", handle, entry)

    def on_message_deleted(self, message_id, affected_reply_ids):
        self._record("on_message_deleted", message_id, affected_reply_ids)

    def on_entry_discarded(self, handle):
        self._record("on_entry_discarded", handle)

    def on_reaction_changed(self, message_id, summary):
        self._record("on_reaction_changed", message_id, summary)

    def on_send_failed(self, handle, reason):
        self._record("on_send_failed", handle, reason)


class ExplodingListener(ScopeListener):
    """Raises from every hook."""

    def on_message_inserted(self, entry):
        raise RuntimeError("listener blew up")

    def on_message_confirmed(self, handle, entry):
        raise RuntimeError("listener blew up")

    def on_send_failed(self, handle, reason):
        raise RuntimeError("listener blew up")
