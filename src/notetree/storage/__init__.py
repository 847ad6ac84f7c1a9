"""Storage layer for the notetree store."""

from notetree.storage.entity_store import EntityStore
from notetree.storage.note_repository import NoteRepository
from notetree.storage.notifications import NoteChangeNotifier
from notetree.storage.page_repository import PageRepository
from notetree.storage.property_repository import PropertyRepository

__all__ = [
    "EntityStore",
    "NoteChangeNotifier",
    "NoteRepository",
    "PageRepository",
    "PropertyRepository",
]
