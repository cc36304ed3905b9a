"""SQLAlchemy database models and engine setup for the Knowling notebook.

Two independent SQLite databases are used:

- the relational store (``notes``, ``categories``, ``note_category``)
- the vector store, a sqlite-vec ``vec0`` table plus a regular table
  holding the rest of each embedding record
"""
import logging
from typing import Optional

from sqlalchemy import (Column, ForeignKey, Integer, String, Table, Text,
                        create_engine, event, text)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from knowling.config import config

logger = logging.getLogger(__name__)

# Create base class for SQLAlchemy models
Base = declarative_base()

# Association table for categories and notes. Rows go away with their note.
note_category = Table(
    "note_category",
    Base.metadata,
    Column(
        "note_id",
        String(36),
        ForeignKey("notes.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "category_id",
        String(36),
        ForeignKey("categories.id"),
        primary_key=True,
    ),
)


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(36), primary_key=True)
    content = Column(Text, nullable=False, default="")
    created = Column(Integer, nullable=False)
    modified = Column(Integer, nullable=False)

    # Relationships
    categories = relationship(
        "DBCategory",
        secondary=note_category,
        back_populates="notes",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}')>"


class DBCategory(Base):
    """Database model for a category.

    ``label_key`` is the case-folded label; its unique constraint is what
    makes "Work" and "work" the same category.
    """
    __tablename__ = "categories"
    id = Column(String(36), primary_key=True)
    label = Column(String(128), nullable=False)
    label_key = Column(String(128), nullable=False, unique=True, index=True)

    # Relationships
    notes = relationship(
        "DBNote", secondary=note_category, back_populates="categories"
    )

    def __repr__(self) -> str:
        """Return string representation of category."""
        return f"<Category(id='{self.id}', label='{self.label}')>"


# Vector store layout. The dimension of the vec0 column is fixed at creation.
VECTOR_TABLE = "note_vectors"
VECTOR_RECORDS_TABLE = "vector_records"


def _is_memory_url(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or ":memory:" in url


def _create_sqlite_engine(url: str) -> Engine:
    """Create a SQLite engine; in-memory URLs share one connection."""
    if _is_memory_url(url):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        url,
        connect_args={"check_same_thread": False},
        pool_pre_ping=True,
    )


def init_db(db_url: Optional[str] = None) -> Engine:
    """Initialize the relational store.

    Every connection gets foreign key enforcement (needed for the
    ``note_category`` cascade) and, for file databases, WAL journaling.
    """
    url = db_url or config.get_db_url()
    engine = _create_sqlite_engine(url)
    in_memory = _is_memory_url(url)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    Base.metadata.create_all(engine)
    logger.info(f"Relational store initialized: {url}")
    return engine


def load_sqlite_vec(dbapi_connection) -> None:
    """Load the sqlite-vec extension into a raw sqlite3 connection."""
    import sqlite_vec

    dbapi_connection.enable_load_extension(True)
    try:
        sqlite_vec.load(dbapi_connection)
    finally:
        dbapi_connection.enable_load_extension(False)


def init_sqlite_vec(engine: Engine, dimension: int) -> bool:
    """Create the vector tables if they do not exist yet.

    Args:
        engine: Engine whose connections already load sqlite-vec.
        dimension: Length of every stored vector.

    Returns:
        True once the tables exist.
    """
    with engine.connect() as conn:
        conn.execute(text(
            f"CREATE VIRTUAL TABLE IF NOT EXISTS {VECTOR_TABLE} USING vec0("
            f"record_id TEXT PRIMARY KEY, "
            f"embedding float[{int(dimension)}])"
        ))
        conn.execute(text(f"""
            CREATE TABLE IF NOT EXISTS {VECTOR_RECORDS_TABLE} (
                id TEXT PRIMARY KEY,
                text TEXT NOT NULL,
                dimension INTEGER NOT NULL,
                created INTEGER NOT NULL,
                modified INTEGER NOT NULL
            )
        """))
        conn.commit()
    return True


def init_vector_db(dimension: int, db_url: Optional[str] = None) -> Engine:
    """Initialize the vector store engine with sqlite-vec loaded on connect."""
    url = db_url or config.get_vector_db_url()
    engine = _create_sqlite_engine(url)

    @event.listens_for(engine, "connect")
    def load_extension(dbapi_connection, connection_record):
        load_sqlite_vec(dbapi_connection)

    init_sqlite_vec(engine, dimension)
    logger.info(f"Vector store initialized: {url} (dimension={dimension})")
    return engine


def get_session_factory(engine: Optional[Engine] = None):
    """Get a session factory for the relational store."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine)
