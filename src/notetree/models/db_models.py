"""SQLAlchemy database models for the notetree store."""
import datetime
from typing import Optional

from sqlalchemy import (Boolean, CheckConstraint, Column, DateTime, Float,
                        ForeignKey, Index, Integer, String, Text, create_engine,
                        event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from notetree.config import config


def utc_now_naive() -> datetime.datetime:
    # Stored naive; SQLite drops tzinfo anyway and readers re-attach UTC
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


# Create base class for SQLAlchemy models
Base = declarative_base()


class DBPage(Base):
    """Database model for a page."""
    __tablename__ = "pages"
    id = Column(String(36), primary_key=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    content = Column(Text, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utc_now_naive, nullable=False)
    updated_at = Column(DateTime, default=utc_now_naive, nullable=False)

    notes = relationship("DBNote", back_populates="page", passive_deletes=True)
    properties = relationship(
        "DBProperty", back_populates="page", passive_deletes=True
    )

    def __repr__(self) -> str:
        """Return string representation of page."""
        return f"<Page(id='{self.id}', name='{self.name}')>"


class DBNote(Base):
    """Database model for a note.

    parent_note_id is a weak self reference: ON DELETE SET NULL promotes
    children to the top level, and nothing here assumes the parent graph
    is acyclic.
    """
    __tablename__ = "notes"
    id = Column(String(36), primary_key=True)
    page_id = Column(
        String(36), ForeignKey("pages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_note_id = Column(
        String(36), ForeignKey("notes.id", ondelete="SET NULL"), nullable=True, index=True
    )
    content = Column(Text, nullable=False, default="")
    order_index = Column(Integer, nullable=False, default=0)
    collapsed = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True, index=True)
    internal = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utc_now_naive, nullable=False)
    updated_at = Column(DateTime, default=utc_now_naive, nullable=False)

    page = relationship("DBPage", back_populates="notes")
    properties = relationship(
        "DBProperty", back_populates="note", passive_deletes=True
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', parent='{self.parent_note_id}')>"


class DBProperty(Base):
    """Database model for a property attached to a note or a page."""
    __tablename__ = "properties"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        String(36), ForeignKey("notes.id", ondelete="CASCADE"), nullable=True, index=True
    )
    page_id = Column(
        String(36), ForeignKey("pages.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name = Column(String(255), nullable=False, index=True)
    value = Column(Text, nullable=False, default="")
    weight = Column(Float, nullable=False, default=2)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utc_now_naive, nullable=False)
    updated_at = Column(DateTime, default=utc_now_naive, nullable=False)

    note = relationship("DBNote", back_populates="properties")
    page = relationship("DBPage", back_populates="properties")

    # Exactly one owner; (owner, name) is deliberately not unique
    __table_args__ = (
        CheckConstraint(
            "(note_id IS NULL) != (page_id IS NULL)", name="property_single_owner"
        ),
        Index("ix_properties_note_name", "note_id", "name"),
    )

    def __repr__(self) -> str:
        """Return string representation of property."""
        owner = f"note='{self.note_id}'" if self.note_id else f"page='{self.page_id}'"
        return (
            f"<Property(id={self.id}, {owner}, "
            f"name='{self.name}', value='{self.value}', weight={self.weight})>"
        )


def init_db(in_memory: Optional[bool] = None, url: Optional[str] = None) -> Engine:
    """Create the engine and schema with hardened SQLite settings.

    - WAL journal for file databases (crash resilience, concurrent readers)
    - foreign_keys=ON so page/note cascades and SET NULL are enforced
    - busy_timeout so writers wait for each other instead of failing at once
    - pysqlite's implicit transaction handling is disabled and BEGIN is
      emitted by SQLAlchemy, which makes SAVEPOINT (begin_nested) work

    Args:
        in_memory: Use a private in-memory database. Defaults to
            config.in_memory_db.
        url: Explicit database URL, overriding both of the above.
    """
    if in_memory is None:
        in_memory = config.in_memory_db

    if url is None:
        url = "sqlite://" if in_memory else config.get_db_url()

    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every checkout sees an empty database
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        is_memory = True
    else:
        engine = create_engine(url, pool_pre_ping=True)
        is_memory = False

    busy_timeout = config.sqlite_busy_timeout_ms

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # Let SQLAlchemy own transaction boundaries
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout)}")
        if not is_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
