"""Append-only analytics event log.

Events are queued in memory and written to the database in batches by a
background task. Recording never raises into the conversation flow; write
failures are logged and the batch is retried on the next flush.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..logging_config import get_logger

logger = get_logger(__name__)

if TYPE_CHECKING:
    from ..storage.database import PromptDatabase

# Failed batches are re-queued up to this many pending events.
MAX_PENDING_EVENTS = 1000


class EventType(Enum):
    TASK_SUBMITTED = "task_submitted"
    QUESTION_CONSENT = "question_consent"
    CLARIFYING_ANSWER = "clarifying_answer"
    CLARIFYING_QUESTIONS_GENERATED = "clarifying_questions_generated"
    PROMPT_GENERATED = "prompt_generated"
    PROMPT_EDITED = "prompt_edited"
    COMMAND = "command"


@dataclass
class EventRecord:
    session_id: str
    event_type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for database storage."""
        return {
            "session_id": self.session_id,
            "event_type": self.event_type.value,
            "payload_json": json.dumps(self.payload, default=str),
            "created_at": self.created_at.isoformat(),
        }


class EventRecorder:
    """Async batched event writer.

    - ``record()`` only appends to a queue; it never waits on the database
    - batches are flushed every ``flush_interval`` or at ``batch_size``
    - ``stop()`` flushes whatever is left
    """

    def __init__(
        self,
        db: "PromptDatabase",
        batch_size: int = 20,
        flush_interval_seconds: float = 1.0,
    ):
        self.db = db
        self.batch_size = batch_size
        self.flush_interval = flush_interval_seconds

        self._queue: list[EventRecord] = []
        self._queue_lock = asyncio.Lock()
        self._flush_task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        """Start the background flush task."""
        if self._running:
            return
        self._running = True
        self._flush_task = asyncio.create_task(self._flush_loop())

    async def stop(self) -> None:
        """Stop the recorder and flush remaining events."""
        self._running = False
        if self._flush_task:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        await self.flush()

    def record(self, session_id: str, event_type: EventType, payload: dict[str, Any] | None = None) -> None:
        """Fire-and-forget entry point used by the pipeline and controller."""
        record = EventRecord(session_id=session_id, event_type=event_type, payload=payload or {})
        # Appending never awaits, so it cannot interleave with flush()
        self._queue.append(record)
        if len(self._queue) < self.batch_size:
            return
        try:
            asyncio.get_running_loop().create_task(self.flush())
        except RuntimeError:
            # No running loop, flushed later
            pass

    async def _flush_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.flush_interval)
                await self.flush()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.debug("Event recorder flush failed", exc_info=True)

    async def flush(self) -> None:
        """Write all queued events to the database."""
        async with self._queue_lock:
            if not self._queue:
                return
            records = self._queue.copy()
            self._queue.clear()

        try:
            await self.db.save_events_batch([r.to_dict() for r in records])
        except Exception:
            logger.warning("Event flush failed, %d events re-queued", len(records), exc_info=True)
            async with self._queue_lock:
                self._queue[:0] = records
                del self._queue[:-MAX_PENDING_EVENTS]

    def get_queue_size(self) -> int:
        return len(self._queue)


# Global instance for shared access
_event_recorder: EventRecorder | None = None


async def init_event_recorder(db: "PromptDatabase") -> EventRecorder:
    """Initialize and start the global event recorder."""
    global _event_recorder

    if _event_recorder is None:
        _event_recorder = EventRecorder(db)

    await _event_recorder.start()
    return _event_recorder


async def shutdown_event_recorder() -> None:
    """Stop and forget the global recorder so the next session starts clean."""
    global _event_recorder

    if _event_recorder is not None:
        await _event_recorder.stop()
        _event_recorder = None
