"""Repository for note and category storage and retrieval."""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload

from knowling.exceptions import (
    DuplicateIdError,
    ErrorCode,
    KnowlingError,
    NoteNotFoundError,
    PersistenceError,
    ValidationError,
)
from knowling.models.db_models import (
    DBCategory,
    DBNote,
    get_session_factory,
    init_db,
    note_category,
)
from knowling.models.schema import Category, Note, generate_id

logger = logging.getLogger(__name__)


@contextmanager
def _persistence_errors(
    operation: str, code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED
) -> Iterator[None]:
    """Re-raise engine failures as PersistenceError, leaving our own errors alone."""
    try:
        yield
    except KnowlingError:
        raise
    except SQLAlchemyError as e:
        logger.error(f"Relational store failure during {operation}: {e}")
        raise PersistenceError(
            f"Relational store failed during {operation}",
            operation=operation,
            code=code,
            original_error=e,
        ) from e


class NoteRepository:
    """Relational store for notes, categories and their association.

    This is the source of truth for everything the vector index cannot
    hold: timestamps and many-to-many category tagging. Every failure of
    the underlying engine surfaces as PersistenceError; nothing is retried.
    """

    def __init__(self, engine: Optional[Engine] = None, db_url: Optional[str] = None):
        """Initialize the repository.

        Args:
            engine: Pre-configured SQLAlchemy engine. When omitted, one is
                created with init_db() from db_url (or the configured path).
            db_url: SQLite URL used when no engine is given.
        """
        self.engine = engine if engine is not None else init_db(db_url)
        self.session_factory = get_session_factory(self.engine)

    @staticmethod
    def _db_category_to_model(db_category: DBCategory) -> Category:
        return Category(id=db_category.id, label=db_category.label)

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        """Convert a database note (with loaded categories) to a Note."""
        return Note(
            id=db_note.id,
            text=db_note.content,
            categories={
                NoteRepository._db_category_to_model(c) for c in db_note.categories
            },
            created_at=db_note.created,
            modified_at=db_note.modified,
        )

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def add_note(self, note: Note) -> Note:
        """Insert a new note row.

        Raises:
            DuplicateIdError: If a note with the same id already exists.
            PersistenceError: If the engine fails.
        """
        logger.info(f"Adding note {note.id} to relational store")
        with _persistence_errors("add_note"):
            with self.session_factory() as session:
                if session.get(DBNote, note.id) is not None:
                    raise DuplicateIdError(note.id)
                session.add(self._note_to_db(note))
                try:
                    session.commit()
                except IntegrityError as e:
                    session.rollback()
                    raise DuplicateIdError(note.id, original_error=e) from e
        return note

    def add_notes(self, notes: Sequence[Note]) -> int:
        """Insert several new notes in one transaction.

        Either every note is inserted or none is.

        Returns:
            Number of notes inserted.
        """
        if not notes:
            return 0
        logger.info(f"Adding {len(notes)} notes to relational store")
        with _persistence_errors("add_notes"):
            with self.session_factory() as session:
                ids = [n.id for n in notes]
                existing = session.scalars(
                    select(DBNote.id).where(DBNote.id.in_(ids))
                ).first()
                if existing is not None:
                    raise DuplicateIdError(existing)
                session.add_all(self._note_to_db(n) for n in notes)
                session.commit()
        return len(notes)

    @staticmethod
    def _note_to_db(note: Note) -> DBNote:
        return DBNote(
            id=note.id,
            content=note.text,
            created=note.created_at,
            modified=note.modified_at,
        )

    def update_note_text(self, note: Note) -> Note:
        """Update the text and modification time of an existing note.

        Categories are not touched; use reconcile_note_categories for that.

        Raises:
            NoteNotFoundError: If no note has this id.
        """
        logger.info(f"Updating note {note.id} in relational store")
        with _persistence_errors("update_note_text"):
            with self.session_factory() as session:
                result = session.execute(
                    update(DBNote)
                    .where(DBNote.id == note.id)
                    .values(content=note.text, modified=note.modified_at)
                )
                if result.rowcount == 0:
                    session.rollback()
                    raise NoteNotFoundError(note.id)
                session.commit()
        return note

    def get_note(self, note_id: str) -> Optional[Note]:
        """Load a note with its full category set, or None if absent."""
        logger.debug(f"Getting note {note_id} from relational store")
        with _persistence_errors("get_note", ErrorCode.STORAGE_READ_FAILED):
            with self.session_factory() as session:
                db_note = session.scalars(
                    select(DBNote)
                    .options(joinedload(DBNote.categories))
                    .where(DBNote.id == note_id)
                ).unique().first()
                if db_note is None:
                    return None
                return self._db_note_to_model(db_note)

    def get_notes_by_ids(self, ids: Sequence[str]) -> List[Note]:
        """Load several notes at once.

        Ids that do not exist are silently omitted. The order of the
        result is not related to the order of ``ids``.
        """
        if not ids:
            return []
        logger.debug(f"Getting notes {list(ids)} from relational store")
        with _persistence_errors("get_notes_by_ids", ErrorCode.STORAGE_READ_FAILED):
            with self.session_factory() as session:
                db_notes = session.scalars(
                    select(DBNote)
                    .options(joinedload(DBNote.categories))
                    .where(DBNote.id.in_(list(set(ids))))
                ).unique().all()
                return [self._db_note_to_model(n) for n in db_notes]

    def get_all_notes(self) -> List[Note]:
        """Load every note with its categories, oldest first."""
        logger.debug("Getting all notes from relational store")
        with _persistence_errors("get_all_notes", ErrorCode.STORAGE_READ_FAILED):
            with self.session_factory() as session:
                db_notes = session.scalars(
                    select(DBNote)
                    .options(joinedload(DBNote.categories))
                    .order_by(DBNote.created, DBNote.id)
                ).unique().all()
                return [self._db_note_to_model(n) for n in db_notes]

    def count_notes(self) -> int:
        """Number of notes in the store."""
        with _persistence_errors("count_notes", ErrorCode.STORAGE_READ_FAILED):
            with self.session_factory() as session:
                return session.scalar(select(func.count(DBNote.id))) or 0

    def delete_note(self, note_id: str) -> bool:
        """Delete a note row; its association rows cascade.

        Returns:
            True if a row was deleted, False if the id was absent.
        """
        logger.info(f"Deleting note {note_id} from relational store")
        with _persistence_errors("delete_note", ErrorCode.STORAGE_DELETE_FAILED):
            with self.session_factory() as session:
                result = session.execute(delete(DBNote).where(DBNote.id == note_id))
                session.commit()
                return result.rowcount > 0

    def delete_all_notes(self) -> int:
        """Delete every note. Categories are kept.

        Returns:
            Number of notes deleted.
        """
        logger.info("Deleting all notes from relational store")
        with _persistence_errors("delete_all_notes", ErrorCode.STORAGE_DELETE_FAILED):
            with self.session_factory() as session:
                result = session.execute(delete(DBNote))
                session.commit()
                return result.rowcount

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def get_or_create_category(self, label: str) -> Category:
        """Find a category by label ignoring case, creating it if absent.

        When a category already exists, its stored label casing is
        returned: the first writer decides the canonical spelling.

        Raises:
            ValidationError: If the label is empty after trimming.
        """
        label = (label or "").strip()
        if not label:
            raise ValidationError(
                "Category label cannot be empty",
                field="label",
                code=ErrorCode.CATEGORY_INVALID,
            )
        key = label.casefold()
        logger.info(f"Upserting category '{label}'")

        with _persistence_errors("get_or_create_category"):
            with self.session_factory() as session:
                db_category = session.scalar(
                    select(DBCategory).where(DBCategory.label_key == key)
                )
                if db_category is not None:
                    return self._db_category_to_model(db_category)

                db_category = DBCategory(id=generate_id(), label=label, label_key=key)
                session.add(db_category)
                try:
                    session.commit()
                except IntegrityError:
                    # Lost a race against another writer: use their row
                    session.rollback()
                    db_category = session.scalar(
                        select(DBCategory).where(DBCategory.label_key == key)
                    )
                    if db_category is None:
                        raise
                return self._db_category_to_model(db_category)

    def get_category_by_id(self, category_id: str) -> Optional[Category]:
        """Look up a category by id, or None if absent."""
        logger.debug(f"Getting category by ID: {category_id}")
        with _persistence_errors("get_category_by_id", ErrorCode.STORAGE_READ_FAILED):
            with self.session_factory() as session:
                db_category = session.get(DBCategory, category_id)
                if db_category is None:
                    return None
                return self._db_category_to_model(db_category)

    def get_all_categories(self) -> List[Category]:
        """Every category, sorted by label ignoring case."""
        with _persistence_errors("get_all_categories", ErrorCode.STORAGE_READ_FAILED):
            with self.session_factory() as session:
                db_categories = session.scalars(
                    select(DBCategory).order_by(DBCategory.label_key)
                ).all()
                return [self._db_category_to_model(c) for c in db_categories]

    def reconcile_note_categories(self, note: Note) -> None:
        """Replace all association rows of a note with its in-memory categories.

        This is a full delete and reinsert, not a diff.
        """
        logger.info(
            f"Reconciling note {note.id} categories {note.category_labels}"
        )
        with _persistence_errors("reconcile_note_categories"):
            with self.session_factory() as session:
                session.execute(
                    delete(note_category).where(note_category.c.note_id == note.id)
                )
                rows = [
                    {"note_id": note.id, "category_id": c.id} for c in note.categories
                ]
                if rows:
                    session.execute(insert(note_category), rows)
                session.commit()
