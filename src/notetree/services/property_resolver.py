"""Inherited property resolution over the note ancestor chain."""
import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from notetree.config import config
from notetree.exceptions import NoteNotFoundError
from notetree.models.schema import InheritedProperties, OwnerKind
from notetree.observability import traced
from notetree.storage.entity_store import EntityStore

logger = logging.getLogger(__name__)


class PropertyResolver:
    """Computes the properties a note inherits from its ancestors.

    The walk follows parent_note_id upward from the note's parent. The
    parent graph is not trusted to be acyclic: a visited set ends the walk
    at the first repeated id, and a hop budget ends pathologically long
    chains. Neither case is an error; the caller gets whatever was
    collected up to that point.
    """

    def __init__(self, store: EntityStore, max_hops: Optional[int] = None):
        self.store = store
        self.max_hops = max_hops if max_hops is not None else config.resolver_max_hops

    @traced("resolve_ancestor_properties")
    def resolve_ancestor_properties(
        self,
        note_id: str,
        include_internal: bool = False,
        session: Optional[Session] = None,
    ) -> InheritedProperties:
        """Return {name: [{"value": v}, ...]} from all ancestors of a note.

        Nearest ancestor first; each (name, value) pair appears once, at the
        position where it was first seen.

        Args:
            note_id: The note whose ancestors are walked (not itself).
            include_internal: Keep properties whose weight is hidden by default.
            session: Read through this session, e.g. one holding uncommitted
                batch writes. A read session is opened when omitted.
        """
        if session is not None:
            return self._walk(session, note_id, include_internal)
        with self.store.read_session() as read_session:
            return self._walk(read_session, note_id, include_internal)

    def _walk(self, session: Session, note_id: str, include_internal: bool) -> InheritedProperties:
        # name -> values in first-seen order (dict as an ordered set)
        collected: Dict[str, Dict[str, None]] = {}
        visited = {note_id}

        try:
            current = self.store.get_note_ancestor(session, note_id, active_only=False)
        except NoteNotFoundError:
            return {}

        hops = 0
        while current is not None:
            if current in visited:
                logger.debug(f"Cycle in ancestor chain of note {note_id} at {current}")
                break
            if hops >= self.max_hops:
                logger.warning(
                    f"Ancestor walk from note {note_id} stopped after {hops} hops"
                )
                break
            hops += 1
            visited.add(current)

            try:
                next_parent = self.store.get_note_ancestor(session, current)
            except NoteNotFoundError:
                # Dangling or inactive ancestor: nothing above it is reachable
                logger.debug(f"Ancestor walk from {note_id} ended at missing note {current}")
                break

            for prop in self.store.get_active_properties(session, current, OwnerKind.NOTE):
                if not self.store.weights.is_visible(prop.weight, include_internal):
                    continue
                collected.setdefault(prop.name, {}).setdefault(prop.value, None)

            current = next_parent

        return {name: [{"value": v} for v in values] for name, values in collected.items()}
