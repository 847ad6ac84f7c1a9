"""Repository for note storage and retrieval."""
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from notetree.models.db_models import DBNote
from notetree.models.schema import Note, ensure_timezone_aware

logger = logging.getLogger(__name__)


class NoteRepository:
    """Row-level access to the notes table.

    Existence rules, parent validation and cascades belong to the
    EntityStore; this class only reads and writes rows.
    """

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        """Convert a database note to a model note."""
        return Note(
            id=db_note.id,
            page_id=db_note.page_id,
            parent_note_id=db_note.parent_note_id,
            content=db_note.content or "",
            order_index=db_note.order_index or 0,
            collapsed=bool(db_note.collapsed),
            active=bool(db_note.active),
            internal=bool(db_note.internal),
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )

    def get(self, session: Session, note_id: str, active_only: bool = False) -> Optional[Note]:
        query = select(DBNote).where(DBNote.id == note_id)
        if active_only:
            query = query.where(DBNote.active.is_(True))
        db_note = session.scalar(query)
        return self._db_note_to_model(db_note) if db_note else None

    def get_parent_link(self, session: Session, note_id: str) -> Optional[Tuple[Optional[str], bool]]:
        """Return (parent_note_id, active) for a note, or None if it does not exist.

        Reads two columns only; the resolver calls this once per hop.
        """
        row = session.execute(
            select(DBNote.parent_note_id, DBNote.active).where(DBNote.id == note_id)
        ).first()
        if row is None:
            return None
        return row.parent_note_id, bool(row.active)

    def insert(self, session: Session, note: Note) -> None:
        session.add(DBNote(
            id=note.id,
            page_id=note.page_id,
            parent_note_id=note.parent_note_id,
            content=note.content,
            order_index=note.order_index,
            collapsed=note.collapsed,
            active=note.active,
            internal=note.internal,
            created_at=note.created_at.replace(tzinfo=None),
            updated_at=note.updated_at.replace(tzinfo=None),
        ))
        session.flush()

    def update_fields(self, session: Session, note_id: str, values: Dict[str, Any]) -> int:
        """Apply column values to one note. Returns the number of rows changed."""
        if not values:
            return 0
        result = session.execute(
            update(DBNote).where(DBNote.id == note_id).values(**values)
        )
        return result.rowcount

    def shift_siblings(
        self,
        session: Session,
        page_id: str,
        note_id: str,
        old_index: int,
        new_index: int,
    ) -> None:
        """Make room at new_index on the page by shifting the notes in between.

        Moving up pushes the notes in [new, old) down by one; moving down
        pulls the notes in (old, new] up by one.
        """
        if new_index == old_index:
            return
        query = update(DBNote).where(DBNote.page_id == page_id, DBNote.id != note_id)
        if new_index < old_index:
            query = query.where(
                DBNote.order_index >= new_index, DBNote.order_index < old_index
            ).values(order_index=DBNote.order_index + 1)
        else:
            query = query.where(
                DBNote.order_index > old_index, DBNote.order_index <= new_index
            ).values(order_index=DBNote.order_index - 1)
        session.execute(query.execution_options(synchronize_session="fetch"))

    def detach_children(self, session: Session, note_id: str) -> int:
        """Move the children of a note to the top level. Returns how many moved."""
        result = session.execute(
            update(DBNote)
            .where(DBNote.parent_note_id == note_id)
            .values(parent_note_id=None)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def delete(self, session: Session, note_id: str) -> bool:
        result = session.execute(
            delete(DBNote)
            .where(DBNote.id == note_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount > 0

    def list_for_page(self, session: Session, page_id: str, active_only: bool = True) -> List[Note]:
        """List the notes of a page in display order."""
        query = (
            select(DBNote)
            .where(DBNote.page_id == page_id)
            .order_by(DBNote.order_index, DBNote.created_at, DBNote.id)
        )
        if active_only:
            query = query.where(DBNote.active.is_(True))
        return [self._db_note_to_model(n) for n in session.scalars(query)]
