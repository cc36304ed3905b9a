"""Service layer for notebook operations.

NotebookService is the single entry point of the notebook. It sequences
writes across the relational store and the vector index, always
relational first, and implements the similarity search policy.

The two writes are not transactional. If the second step fails the
error propagates and the stores are left diverged; nothing is rolled
back or retried.
"""

import datetime
import logging
import os
import threading
from datetime import timezone
from pathlib import Path
from typing import List, Optional, Tuple, Union

from knowling.config import config
from knowling.exceptions import (
    CategoryNotFoundError,
    ErrorCode,
    FileAccessError,
    NoteNotFoundError,
    ValidationError,
)
from knowling.models.schema import Category, Note, utc_timestamp
from knowling.observability import traced
from knowling.services.embedding_service import EmbeddingService
from knowling.storage.note_repository import NoteRepository
from knowling.storage.vector_index import VectorIndex
from knowling.utils import unique_export_names

logger = logging.getLogger(__name__)

EXPORT_DIR_PREFIX = "knowling-export"


def create_default_embedding_service() -> EmbeddingService:
    """Build the ONNX-backed embedding service described by the config."""
    from knowling.services.onnx_providers import OnnxEmbeddingProvider

    provider = OnnxEmbeddingProvider(
        model_id=config.embedding_model,
        dimension=config.embedding_dim,
        max_length=config.embedding_max_tokens,
        cache_dir=config.embedding_cache_dir,
        providers=config.onnx_providers,
    )
    return EmbeddingService(provider, batch_size=config.embedding_batch_size)


class NotebookService:
    """Keeps notes in the relational store and the vector index in lockstep.

    Every public operation holds one re-entrant lock for its whole
    duration, reads included, so a multi-step write is never interleaved
    with another caller. Slow work such as embedding runs under the lock.
    """

    def __init__(
        self,
        repository: Optional[NoteRepository] = None,
        vector_index: Optional[VectorIndex] = None,
        embedding_service: Optional[EmbeddingService] = None,
    ):
        """Initialize the service.

        Args:
            repository: Relational store. Created from the config if None.
            vector_index: Vector index. Created from the config if None,
                using ``embedding_service``.
            embedding_service: Embedding service for a vector index created
                here. Defaults to the configured ONNX model. Ignored when
                ``vector_index`` is given.
        """
        self.repository = repository if repository is not None else NoteRepository()
        if vector_index is None:
            if embedding_service is None:
                embedding_service = create_default_embedding_service()
            vector_index = VectorIndex(
                embedding_service,
                dimension=config.embedding_dim,
                db_url=config.get_vector_db_url(),
            )
        self.vector_index = vector_index
        self._embedding_service = embedding_service
        self._lock = threading.RLock()

    # =========================================================================
    # Notes
    # =========================================================================

    @traced()
    def upsert(self, note_id: Optional[str], text: str) -> Note:
        """Create a note, or replace the text of an existing one.

        Args:
            note_id: None to create a note with a fresh id, or the id of the
                note to update.
            text: Full note text. May be empty.

        Returns:
            The created or updated note. An update keeps the category set.

        Raises:
            ValidationError: If text is not a string.
            NoteNotFoundError: If note_id is given but does not exist.
        """
        if not isinstance(text, str):
            raise ValidationError(
                "Note text must be a string",
                field="text",
                value=type(text).__name__,
                code=ErrorCode.NOTE_VALIDATION_FAILED,
            )

        with self._lock:
            if note_id is None:
                now = utc_timestamp()
                note = Note(text=text, created_at=now, modified_at=now)
                self.repository.add_note(note)
                logger.info(f"Created note {note.id}")
            else:
                note = self.repository.get_note(note_id)
                if note is None:
                    raise NoteNotFoundError(note_id)
                note.text = text
                note.touch()
                self.repository.update_note_text(note)
                logger.info(f"Updated note {note.id}")

            self.vector_index.upsert([note])
            return note

    @traced()
    def get_notes(self) -> List[Note]:
        """Every note with its categories, oldest first."""
        with self._lock:
            return self.repository.get_all_notes()

    @traced()
    def get_note_by_id(self, note_id: str) -> Optional[Note]:
        """Retrieve a note by ID, or None."""
        with self._lock:
            return self.repository.get_note(note_id)

    @traced()
    def count_notes(self) -> int:
        with self._lock:
            return self.repository.count_notes()

    @traced()
    def delete_note(self, note_id: str) -> bool:
        """Delete a note from both stores.

        The relational row goes first. If that fails the vector index is
        not touched. If the vector delete fails afterwards the note is
        already gone from listings and an orphaned embedding record stays
        behind.

        Returns:
            True if the note existed in the relational store.
        """
        with self._lock:
            existed = self.repository.delete_note(note_id)
            self.vector_index.delete([note_id])
            if existed:
                logger.info(f"Deleted note {note_id}")
            else:
                logger.debug(f"Delete requested for absent note {note_id}")
            return existed

    @traced()
    def reset(self) -> int:
        """Delete every note and every embedding record. Categories are kept.

        Returns:
            Number of notes deleted.
        """
        with self._lock:
            deleted = self.repository.delete_all_notes()
            self.vector_index.clear()
            logger.warning(f"Notebook reset: {deleted} notes deleted")
            return deleted

    # =========================================================================
    # Categories
    # =========================================================================

    @traced()
    def add_category_to_note(self, note_id: str, label: str) -> Note:
        """Attach a category by label, creating the category if needed.

        Labels match ignoring case. Adding a category the note already
        carries changes nothing.

        Raises:
            NoteNotFoundError: If the note does not exist.
            ValidationError: If the label is empty.
        """
        with self._lock:
            note = self._require_note(note_id)
            category = self.repository.get_or_create_category(label)
            if note.add_category(category):
                self.repository.reconcile_note_categories(note)
                logger.info(f"Tagged note {note_id} with '{category.label}'")
            return note

    @traced()
    def remove_category_from_note(self, note_id: str, category_id: str) -> Note:
        """Detach a category from a note.

        A category id that no longer resolves is still stripped from the
        note and its association rows are rewritten, so they never point
        at a missing category.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with self._lock:
            note = self._require_note(note_id)
            try:
                self._require_category(category_id)
                stale = False
            except CategoryNotFoundError:
                logger.warning(
                    f"Category {category_id} on note {note_id} no longer exists; "
                    f"stripping it"
                )
                stale = True

            removed = note.remove_category(category_id)
            if removed or stale:
                self.repository.reconcile_note_categories(note)
            return note

    @traced()
    def get_categories(self) -> List[Category]:
        """Every category, sorted by label ignoring case."""
        with self._lock:
            return self.repository.get_all_categories()

    def _require_note(self, note_id: str) -> Note:
        note = self.repository.get_note(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def _require_category(self, category_id: str) -> Category:
        category = self.repository.get_category_by_id(category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    # =========================================================================
    # Similarity
    # =========================================================================

    @traced()
    def get_similar_notes(
        self,
        note: Note,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[Tuple[Note, float]]:
        """Find notes whose text is close to ``note``'s text.

        Takes the ``limit`` nearest neighbors other than ``note`` itself
        and keeps those whose distance is strictly below ``threshold``.
        Distances are squared Euclidean, so near-duplicates sit close to 0.
        Hits the relational store cannot resolve are dropped.

        Args:
            note: The note to compare against.
            limit: Neighbors to consider. Defaults to config.similar_notes_limit.
            threshold: Distance cutoff. Defaults to
                config.similar_notes_threshold.

        Returns:
            (note, distance) pairs, most similar first. May be empty.
        """
        limit = config.similar_notes_limit if limit is None else limit
        threshold = config.similar_notes_threshold if threshold is None else threshold
        if limit < 1:
            raise ValidationError("limit must be at least 1", field="limit", value=limit)
        if threshold < 0:
            raise ValidationError(
                "threshold cannot be negative", field="threshold", value=threshold
            )

        with self._lock:
            hits = self.vector_index.nearest(note.text, exclude_id=note.id, limit=limit)
            close_hits = [h for h in hits if h.distance < threshold]
            if not close_hits:
                return []

            found = {
                n.id: n
                for n in self.repository.get_notes_by_ids([h.id for h in close_hits])
            }
            results = []
            for hit in close_hits:
                similar = found.get(hit.id)
                if similar is None:
                    logger.warning(
                        f"Vector hit {hit.id} has no relational note; skipping"
                    )
                    continue
                results.append((similar, hit.distance))

            results.sort(key=lambda pair: pair[1])
            return results

    # =========================================================================
    # Import / Export
    # =========================================================================

    @traced()
    def export_notes(self, target_dir: Union[str, Path]) -> Tuple[int, Path]:
        """Write every note to a fresh subdirectory of ``target_dir``.

        Each note becomes one file holding its raw text, named after the
        title derived from its first line.

        Returns:
            (number of notes written, path of the created directory)

        Raises:
            FileAccessError: If target_dir is missing, not a directory, not
                writable, or a write fails.
        """
        target = Path(target_dir).expanduser()
        if not target.exists():
            raise FileAccessError(
                f"Export target does not exist: {target}",
                path=str(target),
                code=ErrorCode.FILE_NOT_FOUND,
            )
        if not target.is_dir():
            raise FileAccessError(
                f"Export target is not a directory: {target}",
                path=str(target),
                code=ErrorCode.FILE_NOT_DIRECTORY,
            )
        if not os.access(target, os.W_OK):
            raise FileAccessError(
                f"Export target is not writable: {target}",
                path=str(target),
                code=ErrorCode.FILE_NOT_WRITABLE,
            )

        with self._lock:
            notes = self.repository.get_all_notes()
            export_dir = self._make_export_dir(target)
            names = unique_export_names(notes, config.note_file_extension)
            for note, name in zip(notes, names):
                path = export_dir / name
                try:
                    path.write_text(note.text, encoding="utf-8")
                except OSError as e:
                    raise FileAccessError(
                        f"Could not write {path}: {e}",
                        path=str(path),
                        original_error=e,
                    ) from e

            logger.info(f"Exported {len(notes)} notes to {export_dir}")
            return len(notes), export_dir

    @staticmethod
    def _make_export_dir(target: Path) -> Path:
        """Create a timestamp-named directory that did not exist before."""
        stamp = datetime.datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        base = f"{EXPORT_DIR_PREFIX}-{stamp}"
        attempt = 0
        while True:
            name = base if attempt == 0 else f"{base}-{attempt}"
            export_dir = target / name
            try:
                export_dir.mkdir()
                return export_dir
            except FileExistsError:
                attempt += 1
            except OSError as e:
                raise FileAccessError(
                    f"Could not create export directory {export_dir}: {e}",
                    path=str(export_dir),
                    code=ErrorCode.FILE_NOT_WRITABLE,
                    original_error=e,
                ) from e

    @traced()
    def import_notes(self, source_dir: Union[str, Path]) -> int:
        """Create one new note per note file in ``source_dir``.

        Only files with the configured note extension are read, and
        subdirectories are not descended into. Every note gets a fresh id
        and the full file contents as text.

        Returns:
            Number of notes imported.

        Raises:
            FileAccessError: If source_dir is missing, not a directory, or
                a file cannot be read.
        """
        source = Path(source_dir).expanduser()
        if not source.exists():
            raise FileAccessError(
                f"Import source does not exist: {source}",
                path=str(source),
                code=ErrorCode.FILE_NOT_FOUND,
            )
        if not source.is_dir():
            raise FileAccessError(
                f"Import source is not a directory: {source}",
                path=str(source),
                code=ErrorCode.FILE_NOT_DIRECTORY,
            )

        extension = config.note_file_extension.lower()
        with self._lock:
            files = sorted(
                p
                for p in source.iterdir()
                if p.is_file() and p.suffix.lower() == extension
            )
            now = utc_timestamp()
            notes = []
            for path in files:
                try:
                    text = path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    raise FileAccessError(
                        f"Could not read {path}: {e}",
                        path=str(path),
                        original_error=e,
                    ) from e
                notes.append(Note(text=text, created_at=now, modified_at=now))

            if not notes:
                logger.info(f"No note files found in {source}")
                return 0

            self.repository.add_notes(notes)
            self.vector_index.upsert(notes)
            logger.info(f"Imported {len(notes)} notes from {source}")
            return len(notes)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Release both stores and unload the embedding model."""
        with self._lock:
            self.vector_index.close()
            self.repository.engine.dispose()
            if self._embedding_service is not None:
                self._embedding_service.shutdown()
            logger.info("NotebookService closed")
