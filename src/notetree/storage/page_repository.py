"""Repository for page storage and retrieval."""
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from notetree.models.db_models import DBPage
from notetree.models.schema import Page, ensure_timezone_aware

logger = logging.getLogger(__name__)


class PageRepository:
    """Repository for pages.

    Methods take the session of the caller's transaction, so page writes
    commit or roll back together with the notes written next to them.
    """

    @staticmethod
    def _db_page_to_model(db_page: DBPage) -> Page:
        return Page(
            id=db_page.id,
            name=db_page.name,
            content=db_page.content,
            active=db_page.active,
            created_at=ensure_timezone_aware(db_page.created_at),
            updated_at=ensure_timezone_aware(db_page.updated_at),
        )

    def get(self, session: Session, page_id: str) -> Optional[Page]:
        """Get a page by ID."""
        db_page = session.get(DBPage, page_id)
        return self._db_page_to_model(db_page) if db_page else None

    def get_by_name(self, session: Session, name: str) -> Optional[Page]:
        """Get a page by name, ignoring case."""
        db_page = session.scalar(
            select(DBPage).where(func.lower(DBPage.name) == name.strip().lower())
        )
        return self._db_page_to_model(db_page) if db_page else None

    def exists(self, session: Session, page_id: str) -> bool:
        return session.scalar(select(DBPage.id).where(DBPage.id == page_id)) is not None

    def insert(self, session: Session, page: Page) -> Page:
        """Insert a page row and flush so constraint failures surface here."""
        session.add(DBPage(
            id=page.id,
            name=page.name,
            content=page.content,
            active=page.active,
            created_at=page.created_at.replace(tzinfo=None),
            updated_at=page.updated_at.replace(tzinfo=None),
        ))
        session.flush()
        logger.debug(f"Inserted page {page.id} ({page.name!r})")
        return page

