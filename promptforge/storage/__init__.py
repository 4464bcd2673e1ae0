"""Persistence: SQLite datastore and the local draft file."""

from .database import PromptDatabase, redact_for_storage
from .drafts import DRAFT_VERSION, DraftPersister, DraftStore, SnapshotSlot, StoredDraft

__all__ = [
    "PromptDatabase",
    "redact_for_storage",
    "DRAFT_VERSION",
    "DraftPersister",
    "DraftStore",
    "SnapshotSlot",
    "StoredDraft",
]
