"""Read-path and page-append services built on the store and the engine."""
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from notetree.exceptions import (ErrorCode, PageNotFoundError, StorageError,
                                 ValidationError)
from notetree.models.schema import AppendToPageResult, NoteView
from notetree.services.batch_engine import BatchMutationEngine
from notetree.services.property_resolver import PropertyResolver
from notetree.storage.entity_store import EntityStore

logger = logging.getLogger(__name__)

# Keys a note item passed to append_to_page may carry
_APPEND_NOTE_KEYS = ("content", "parent_note_id", "order_index", "collapsed", "client_temp_id")


class NoteService:
    """Service layer for reading notes and appending to pages.

    Reads go through a read session; every write is delegated to the batch
    engine so it gets the same atomicity and temp-id handling as a batch.
    """

    def __init__(
        self,
        store: Optional[EntityStore] = None,
        resolver: Optional[PropertyResolver] = None,
        engine: Optional[BatchMutationEngine] = None,
    ):
        self.store = store or EntityStore()
        self.resolver = resolver or PropertyResolver(self.store)
        self.engine = engine or BatchMutationEngine(self.store, resolver=self.resolver)

    def get_note(
        self,
        note_id: str,
        include_internal: bool = False,
        include_parent_properties: bool = False,
    ) -> Optional[NoteView]:
        """Get an active note with its properties, or None if there is none."""
        try:
            with self.store.read_session() as session:
                note = self.store.get_note(session, note_id, active_only=True)
                if note is None:
                    return None
                view = self.store.build_note_view(session, note, include_internal=include_internal)
                if include_parent_properties:
                    view.parent_properties = self.resolver.resolve_ancestor_properties(
                        note_id, include_internal=include_internal, session=session
                    )
                return view
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to read note {note_id}",
                operation="get_note",
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def get_page_notes(self, page_id: str, include_internal: bool = False) -> List[NoteView]:
        """Active notes of a page in display order.

        Raises:
            PageNotFoundError: If the page does not exist.
        """
        try:
            with self.store.read_session() as session:
                if self.store.get_page(session, page_id) is None:
                    raise PageNotFoundError(page_id)
                return [
                    self.store.build_note_view(session, note, include_internal=include_internal)
                    for note in self.store.list_page_notes(session, page_id)
                ]
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to list notes of page {page_id}",
                operation="get_page_notes",
                original_error=e,
            ) from e

    def enrich_search_results(
        self, hits: List[Dict[str, Any]], include_internal: bool = False
    ) -> List[Dict[str, Any]]:
        """Attach parent_properties to search hits.

        Each hit is identified by its ``note_id`` key, falling back to ``id``.
        Hits that name no note get an empty mapping. The input dicts are not
        modified.
        """
        enriched = []
        with self.store.read_session() as session:
            for hit in hits:
                item = dict(hit)
                note_id = item.get("note_id") or item.get("id")
                if isinstance(note_id, str) and note_id:
                    item["parent_properties"] = self.resolver.resolve_ancestor_properties(
                        note_id, include_internal=include_internal, session=session
                    )
                else:
                    item["parent_properties"] = {}
                enriched.append(item)
        return enriched

    def append_to_page(
        self,
        page_name: str,
        notes: Union[str, List[Any]],
        include_parent_properties: bool = False,
    ) -> AppendToPageResult:
        """Append notes to a page, creating the page first if needed.

        Args:
            page_name: Name of the page (case-insensitive lookup).
            notes: A bare string for one note, or a list of strings and/or
                dicts with a ``content`` string and optional parent_note_id,
                order_index, collapsed and client_temp_id.
            include_parent_properties: Attach inherited properties to the
                created notes.

        Returns:
            The page view, whether the page was created, and the per-note
            batch results.

        Raises:
            ValidationError: If page_name or notes is malformed.
            BatchFatalError: If the batch was rolled back as a whole.
        """
        if not isinstance(page_name, str) or not page_name.strip():
            raise ValidationError(
                "page_name is required and must be a non-empty string.",
                field="page_name",
                code=ErrorCode.PAGE_NAME_REQUIRED,
            )
        page_name = page_name.strip()

        items = [notes] if isinstance(notes, str) else notes
        if not isinstance(items, list) or not items:
            raise ValidationError(
                "notes must be a string or a non-empty list of notes", field="notes"
            )

        operations = []
        for position, item in enumerate(items):
            if isinstance(item, str):
                item = {"content": item}
            if not isinstance(item, dict) or not isinstance(item.get("content"), str):
                raise ValidationError(
                    "Each note item must be an object with a 'content' string.",
                    field=f"notes[{position}]",
                )
            payload = {key: item[key] for key in _APPEND_NOTE_KEYS if key in item}
            payload.setdefault("order_index", 0)
            payload["page_name"] = page_name
            operations.append({"type": "create", "payload": payload})

        with self.store.read_session() as session:
            existed = self.store.get_page_by_name(session, page_name) is not None

        results = self.engine.execute_batch(
            operations, include_parent_properties=include_parent_properties
        )

        with self.store.read_session() as session:
            page = self.store.get_page_by_name(session, page_name)
            page_view = self.store.build_page_view(session, page) if page else None

        created = not existed and page_view is not None
        logger.info(
            f"Appended {sum(1 for r in results if r.ok)}/{len(results)} notes to page "
            f"{page_name!r}{' (created)' if created else ''}"
        )
        return AppendToPageResult(page=page_view, created=created, appended_notes=results)
