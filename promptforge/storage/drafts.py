"""Draft persistence for reload-resume and single-level restore.

A draft is one versioned JSON file holding the whole ``ConversationState``,
stamped with the session and user it belongs to. Loading discards drafts
that are expired, written by a newer version, or scoped to someone else.
"""

import asyncio
import json
import os
import time
from pathlib import Path

from pydantic import BaseModel, ValidationError

from ..logging_config import get_logger
from ..models.conversation import ConversationState, Snapshot

logger = get_logger(__name__)

DRAFT_VERSION = 3


class StoredDraft(BaseModel):
    version: int = DRAFT_VERSION
    saved_at: float
    session_id: str | None = None
    user_id: str | None = None
    state: ConversationState


class DraftStore:
    """Reads and writes the single draft file."""

    def __init__(self, path: str | Path, expiry_hours: float = 24):
        self.path = Path(path)
        self.expiry_seconds = expiry_hours * 3600

    def load(
        self,
        session_id: str | None = None,
        user_id: str | None = None,
        now: float | None = None,
    ) -> ConversationState | None:
        """Return the stored state if it is usable in this scope, else None.

        Unusable drafts are deleted so they are never merged later.
        """
        if not self.path.exists():
            return None
        try:
            stored = StoredDraft.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Unreadable draft, clearing: %s", e)
            self.clear()
            return None

        now = time.time() if now is None else now
        if stored.version > DRAFT_VERSION:
            logger.info("Draft version %d too new, clearing", stored.version)
            self.clear()
            return None
        if now - stored.saved_at > self.expiry_seconds:
            logger.info("Draft expired, clearing")
            self.clear()
            return None
        if stored.session_id and session_id and stored.session_id != session_id:
            logger.info("Draft belongs to another session, discarding")
            self.clear()
            return None
        if stored.user_id != user_id:
            logger.info("Draft belongs to another user, discarding")
            self.clear()
            return None
        return stored.state

    def save(
        self,
        state: ConversationState,
        session_id: str | None = None,
        user_id: str | None = None,
    ) -> None:
        """Write ``state``; an empty conversation deletes the draft instead."""
        if state.is_empty():
            self.clear()
            return
        stored = StoredDraft(
            saved_at=time.time(),
            session_id=session_id,
            user_id=user_id,
            state=state,
        )
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(stored.model_dump_json(), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning("Failed to save draft: %s", e)

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to clear draft: %s", e)


class SnapshotSlot:
    """Holds at most one snapshot taken before a destructive action."""

    def __init__(self):
        self._snapshot: Snapshot | None = None

    @property
    def available(self) -> bool:
        return self._snapshot is not None

    def take(self, state: ConversationState) -> Snapshot:
        self._snapshot = Snapshot.of(state)
        return self._snapshot

    def restore(self) -> ConversationState | None:
        """Return the snapshot's state and empty the slot."""
        if self._snapshot is None:
            return None
        state = self._snapshot.restore()
        self._snapshot = None
        return state

    def discard(self) -> None:
        self._snapshot = None


class DraftPersister:
    """Debounced writer in front of a ``DraftStore``.

    Changes inside the debounce window are coalesced into one write;
    ``flush()`` writes whatever is pending right away.
    """

    def __init__(self, store: DraftStore, debounce_seconds: float = 1.0):
        self.store = store
        self.debounce_seconds = debounce_seconds
        self._pending: tuple[ConversationState, str | None, str | None] | None = None
        self._last_serialized = ""
        self._timer: asyncio.Task | None = None
        self.enabled = True

    def schedule(
        self,
        state: ConversationState,
        session_id: str | None = None,
        user_id: str | None = None,
    ) -> None:
        if not self.enabled:
            return
        serialized = json.dumps(
            [state.model_dump(mode="json", exclude={"activity"}), session_id, user_id],
            sort_keys=True,
        )
        if serialized == self._last_serialized:
            return
        self._last_serialized = serialized
        self._pending = (state.model_copy(deep=True), session_id, user_id)

        if self._timer and not self._timer.done():
            self._timer.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop, write through
            self._write_pending()
            return
        self._timer = loop.create_task(self._delayed_write())

    async def _delayed_write(self) -> None:
        try:
            await asyncio.sleep(self.debounce_seconds)
        except asyncio.CancelledError:
            return
        self._write_pending()

    def _write_pending(self) -> None:
        if self._pending is None:
            return
        state, session_id, user_id = self._pending
        self._pending = None
        self.store.save(state, session_id=session_id, user_id=user_id)

    def flush(self) -> None:
        """Write the pending state now (used on teardown)."""
        if self._timer and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        self._write_pending()

    def clear(self) -> None:
        """Drop anything pending and delete the stored draft."""
        if self._timer and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        self._pending = None
        self._last_serialized = ""
        self.store.clear()
