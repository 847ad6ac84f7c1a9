"""Entity store: transactional access to pages, notes and properties.

All writes happen inside ``transaction()``. Each mutating method takes the
session of that transaction, so a caller can group many mutations into one
atomic unit and put each of them in its own ``savepoint``.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from notetree.exceptions import (ErrorCode, NoteNotFoundError, PageNotFoundError,
                                 ValidationError)
from notetree.models.db_models import get_session_factory, init_db, utc_now_naive
from notetree.models.schema import (Note, NoteView, OwnerKind, Page, PageView,
                                    Property, PropertyValue, generate_id)
from notetree.storage.note_repository import NoteRepository
from notetree.storage.notifications import NoteChangeNotifier
from notetree.storage.page_repository import PageRepository
from notetree.storage.property_parser import BracePropertyParser, PropertyParser
from notetree.storage.property_repository import PropertyRepository
from notetree.storage.property_weights import DEFAULT_WEIGHT_TABLE, PropertyWeightTable

logger = logging.getLogger(__name__)

# session.info key holding (note_id, content) pairs awaiting commit
_PENDING_EVENTS = "notetree.pending_note_events"

# Columns an update may change, besides content
_UPDATABLE_FIELDS = ("content", "parent_note_id", "order_index", "collapsed", "active", "page_id")


class EntityStore:
    """Facade over the page, note and property repositories.

    Owns the weight table and the content parser, keeps properties in sync
    with note content and queues change notifications until commit.
    """

    def __init__(
        self,
        engine: Optional[Engine] = None,
        parser: Optional[PropertyParser] = None,
        weights: Optional[PropertyWeightTable] = None,
        notifier: Optional[NoteChangeNotifier] = None,
    ):
        """Initialize the store.

        Args:
            engine: SQLAlchemy engine. If None, one is built from config.
            parser: Content property parser. Defaults to BracePropertyParser.
            weights: Weight visibility table. Defaults to the standard table.
            notifier: Change notifier. A private one is created if omitted.
        """
        self.engine = engine or init_db()
        self.session_factory = get_session_factory(self.engine)
        self.parser = parser or BracePropertyParser()
        self.weights = weights or DEFAULT_WEIGHT_TABLE
        self.notifier = notifier or NoteChangeNotifier()
        self.pages = PageRepository()
        self.notes = NoteRepository()
        self.properties = PropertyRepository()

    # ------------------------------------------------------------------
    # Sessions and transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """One session, one transaction.

        Commits on clean exit and rolls back on any exception. Note change
        events queued during the transaction are published after the commit
        and dropped on rollback.
        """
        session = self.session_factory()
        try:
            with session.begin():
                yield session
        except Exception:
            session.info.pop(_PENDING_EVENTS, None)
            raise
        else:
            events = session.info.pop(_PENDING_EVENTS, [])
        finally:
            session.close()

        for note_id, content in events:
            self.notifier.publish(note_id, content)

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        with self.session_factory() as session:
            yield session

    @contextmanager
    def savepoint(self, session: Session) -> Iterator[Session]:
        """Nested transaction for one unit of work inside a transaction.

        On failure the rows written inside it are rolled back, together with
        the change events it queued, and the exception propagates.
        """
        pending = session.info.setdefault(_PENDING_EVENTS, [])
        mark = len(pending)
        try:
            with session.begin_nested():
                yield session
        except Exception:
            del pending[mark:]
            raise

    def _queue_event(self, session: Session, note_id: str, content: Optional[str]) -> None:
        session.info.setdefault(_PENDING_EVENTS, []).append((note_id, content))

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def get_page(self, session: Session, page_id: str) -> Optional[Page]:
        return self.pages.get(session, page_id)

    def get_page_by_name(self, session: Session, name: str) -> Optional[Page]:
        return self.pages.get_by_name(session, name)

    def create_page(self, session: Session, name: str, content: Optional[str] = None) -> Page:
        """Create a page. Names are unique regardless of case."""
        if not name or not name.strip():
            raise ValidationError(
                "Page name is required", field="name", code=ErrorCode.PAGE_NAME_REQUIRED
            )
        if self.pages.get_by_name(session, name) is not None:
            raise ValidationError(
                f"Page '{name.strip()}' already exists", field="name", value=name
            )
        page = self.pages.insert(session, Page(name=name, content=content))
        logger.info(f"Created page {page.id} ({page.name!r})")
        return page

    def get_or_create_page(self, session: Session, name: str) -> Tuple[Page, bool]:
        """Find a page by name or create it. Returns (page, created)."""
        if not name or not name.strip():
            raise ValidationError(
                "Page name is required", field="name", code=ErrorCode.PAGE_NAME_REQUIRED
            )
        page = self.pages.get_by_name(session, name)
        if page is not None:
            return page, False
        return self.create_page(session, name), True

    def list_page_notes(self, session: Session, page_id: str, active_only: bool = True) -> List[Note]:
        return self.notes.list_for_page(session, page_id, active_only=active_only)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def get_note(self, session: Session, note_id: str, active_only: bool = False) -> Optional[Note]:
        return self.notes.get(session, note_id, active_only=active_only)

    def note_exists(self, session: Session, note_id: str) -> bool:
        return self.notes.get_parent_link(session, note_id) is not None

    def get_note_ancestor(
        self, session: Session, note_id: str, active_only: bool = True
    ) -> Optional[str]:
        """Return the parent id of a note.

        Raises:
            NoteNotFoundError: If the note does not exist, or is inactive
                while active_only is set.
        """
        link = self.notes.get_parent_link(session, note_id)
        if link is None:
            raise NoteNotFoundError(note_id)
        parent_id, active = link
        if active_only and not active:
            raise NoteNotFoundError(note_id, f"Note with ID '{note_id}' is not active")
        return parent_id

    def create_note(
        self,
        session: Session,
        page_id: str,
        content: str = "",
        parent_note_id: Optional[str] = None,
        order_index: Optional[int] = None,
        collapsed: bool = False,
        note_id: Optional[str] = None,
    ) -> Note:
        """Insert a note and index the properties in its content.

        Raises:
            PageNotFoundError: If the page does not exist.
            NoteNotFoundError: If parent_note_id names no note.
        """
        if not self.pages.exists(session, page_id):
            raise PageNotFoundError(page_id)
        if parent_note_id is not None and not self.note_exists(session, parent_note_id):
            raise NoteNotFoundError(
                parent_note_id, f"Parent note with ID '{parent_note_id}' not found"
            )

        note = Note(
            id=note_id or generate_id(),
            page_id=page_id,
            parent_note_id=parent_note_id,
            content=content or "",
            order_index=order_index if order_index is not None else 0,
            collapsed=collapsed,
        )
        self.notes.insert(session, note)

        if note.content.strip():
            self._index_content(session, note.id, note.content)

        self._queue_event(session, note.id, note.content)
        logger.debug(f"Created note {note.id} on page {page_id}")
        return self.notes.get(session, note.id)

    def update_note(self, session: Session, note_id: str, changes: Dict[str, Any]) -> Note:
        """Apply a partial update. Keys missing from changes are left alone.

        Raises:
            NoteNotFoundError: If the note or the new parent does not exist.
            PageNotFoundError: If the new page does not exist.
            ValidationError: On an empty or unknown change set, or when the
                new parent would make the note its own ancestor.
        """
        current = self.notes.get(session, note_id)
        if current is None:
            raise NoteNotFoundError(note_id)

        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown fields for update: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        if not changes:
            raise ValidationError(
                "No updatable fields provided for note", field="id", value=note_id,
                code=ErrorCode.MISSING_FIELD,
            )

        values: Dict[str, Any] = {}

        if "parent_note_id" in changes:
            new_parent = changes["parent_note_id"]
            if new_parent is not None:
                if not self.note_exists(session, new_parent):
                    raise NoteNotFoundError(
                        new_parent, f"Parent note with ID '{new_parent}' not found"
                    )
                if self._would_cycle(session, note_id, new_parent):
                    raise ValidationError(
                        "A note cannot be moved under itself or its own descendant",
                        field="parent_note_id",
                        value=new_parent,
                        code=ErrorCode.NOTE_PARENT_CYCLE,
                    )
            values["parent_note_id"] = new_parent

        if "page_id" in changes:
            if not self.pages.exists(session, changes["page_id"]):
                raise PageNotFoundError(changes["page_id"])
            values["page_id"] = changes["page_id"]

        if "order_index" in changes:
            new_index = int(changes["order_index"])
            self.notes.shift_siblings(
                session, current.page_id, note_id, current.order_index, new_index
            )
            values["order_index"] = new_index

        for name in ("content", "collapsed", "active"):
            if name in changes:
                values[name] = changes[name]

        values["updated_at"] = utc_now_naive()
        self.notes.update_fields(session, note_id, values)

        if "content" in changes:
            self._index_content(session, note_id, changes["content"])

        updated = self.notes.get(session, note_id)
        self._queue_event(session, note_id, updated.content)
        return updated

    def delete_note(self, session: Session, note_id: str) -> None:
        """Delete a note and its properties; its children move to the top level.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        if not self.note_exists(session, note_id):
            raise NoteNotFoundError(note_id)

        promoted = self.notes.detach_children(session, note_id)
        self.properties.delete_for_owner(session, OwnerKind.NOTE, note_id)
        self.notes.delete(session, note_id)

        self._queue_event(session, note_id, None)
        logger.debug(f"Deleted note {note_id} ({promoted} children promoted)")

    def _would_cycle(self, session: Session, note_id: str, new_parent_id: str) -> bool:
        """True if note_id is new_parent_id or one of its ancestors.

        Walks the existing chain with a visited set, so a cycle already in
        the data cannot trap the check.
        """
        visited = set()
        current: Optional[str] = new_parent_id
        while current is not None and current not in visited:
            if current == note_id:
                return True
            visited.add(current)
            link = self.notes.get_parent_link(session, current)
            if link is None:
                return False
            current = link[0]
        return False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def get_active_properties(
        self, session: Session, owner_id: str, owner_kind: OwnerKind = OwnerKind.NOTE
    ) -> List[Property]:
        """Active properties of a note or page, ordered by creation."""
        return self.properties.list_active(session, owner_kind, owner_id)

    def add_property(
        self,
        session: Session,
        owner_kind: OwnerKind,
        owner_id: str,
        name: str,
        value: str,
        weight: float = 2,
    ) -> Property:
        """Attach one property row to a note or page."""
        if OwnerKind(owner_kind) is OwnerKind.NOTE:
            if not self.note_exists(session, owner_id):
                raise NoteNotFoundError(owner_id)
        elif not self.pages.exists(session, owner_id):
            raise PageNotFoundError(owner_id)
        if not name or not name.strip():
            raise ValidationError("Property name is required", field="name")
        return self.properties.add(session, owner_kind, owner_id, name.strip(), value, weight)

    def _index_content(self, session: Session, note_id: str, content: Optional[str]) -> None:
        """Bring a note's properties in line with its content.

        Replace-behavior rows are rewritten from the parsed set; append-behavior
        rows are kept and only new (name, value, weight) triples are added.
        Notes marked encrypted=true are left untouched.
        """
        if self.properties.has_active_value(session, OwnerKind.NOTE, note_id, "encrypted", "true"):
            logger.debug(f"Skipping property indexing for encrypted note {note_id}")
            return

        parsed = self.parser.parse(content or "")
        existing = self.properties.list_active(session, OwnerKind.NOTE, note_id)

        self.properties.delete_ids(
            session, [p.id for p in existing if not self.weights.is_append(p.weight)]
        )
        seen = {
            (p.name, p.value, float(p.weight))
            for p in existing
            if self.weights.is_append(p.weight)
        }

        for prop in parsed:
            key = (prop.name, prop.value, float(prop.weight))
            if key in seen:
                continue
            seen.add(key)
            self.properties.add(session, OwnerKind.NOTE, note_id, prop.name, prop.value, prop.weight)

        internal = any(
            p.name.lower() == "internal" and p.value.lower() == "true" for p in parsed
        )
        self.notes.update_fields(session, note_id, {"internal": internal})

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _group_properties(
        self, props: List[Property], include_internal: bool
    ) -> Dict[str, List[PropertyValue]]:
        grouped: Dict[str, List[PropertyValue]] = {}
        for prop in props:
            if not self.weights.is_visible(prop.weight, include_internal):
                continue
            grouped.setdefault(prop.name, []).append(
                PropertyValue(value=prop.value, internal=self.weights.is_internal(prop.weight))
            )
        return grouped

    def build_note_view(
        self, session: Session, note: Note, include_internal: bool = False
    ) -> NoteView:
        """A note with its own (visible) properties grouped by name."""
        props = self.properties.list_active(session, OwnerKind.NOTE, note.id)
        return NoteView(
            **note.model_dump(),
            properties=self._group_properties(props, include_internal),
        )

    def build_page_view(
        self, session: Session, page: Page, include_internal: bool = False
    ) -> PageView:
        props = self.properties.list_active(session, OwnerKind.PAGE, page.id)
        return PageView(
            **page.model_dump(),
            properties=self._group_properties(props, include_internal),
        )
