"""Configuration module for the Knowling notebook."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from knowling import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the notebook data
_USER_APP_DIR = Path.home() / ".knowling"
load_dotenv(_USER_APP_DIR / ".env")


logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class KnowlingConfig(BaseModel):
    """Configuration for the notebook."""

    # Base directory for relative data paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("KNOWLING_BASE_DIR", str(_USER_APP_DIR)))
    )
    # Relational store (notes, categories, note_category)
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("KNOWLING_DATABASE_PATH", "data/notebook.db")
        )
    )
    # Vector store (sqlite-vec). Kept in its own file so the two stores
    # are independent engines.
    vector_db_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("KNOWLING_VECTOR_DB_PATH", "data/vectors.db")
        )
    )
    app_version: str = Field(default=__version__)

    # Embedding model configuration
    embedding_model: str = Field(
        default_factory=lambda: os.getenv(
            "KNOWLING_EMBEDDING_MODEL", "BAAI/bge-small-en-v1.5"
        )
    )
    embedding_dim: int = Field(
        default_factory=lambda: int(os.getenv("KNOWLING_EMBEDDING_DIM", "384"))
    )
    embedding_max_tokens: int = Field(
        default_factory=lambda: int(os.getenv("KNOWLING_EMBEDDING_MAX_TOKENS", "512"))
    )
    embedding_batch_size: int = Field(
        default_factory=lambda: int(os.getenv("KNOWLING_EMBEDDING_BATCH_SIZE", "32"))
    )
    embedding_cache_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("KNOWLING_EMBEDDING_CACHE_DIR"))
            if os.getenv("KNOWLING_EMBEDDING_CACHE_DIR")
            else None
        )
    )
    # ONNX execution provider preference: "auto" (detect GPU/CPU), "cpu", or
    # comma-separated list like "CUDAExecutionProvider,CPUExecutionProvider"
    onnx_providers: str = Field(
        default_factory=lambda: os.getenv("KNOWLING_ONNX_PROVIDERS", "auto")
    )

    # Similarity search defaults
    similar_notes_limit: int = Field(
        default_factory=lambda: int(os.getenv("KNOWLING_SIMILAR_LIMIT", "3"))
    )
    similar_notes_threshold: float = Field(
        default_factory=lambda: float(os.getenv("KNOWLING_SIMILAR_THRESHOLD", "0.01"))
    )

    # Import / export
    note_file_extension: str = Field(
        default_factory=lambda: os.getenv("KNOWLING_NOTE_EXTENSION", ".md")
    )

    # Logging
    log_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("KNOWLING_LOG_DIR", str(_USER_APP_DIR / "logs"))
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("KNOWLING_LOG_LEVEL", "INFO")
    )
    log_to_console: bool = Field(
        default_factory=lambda: _env_bool("KNOWLING_LOG_CONSOLE", "true")
    )

    @field_validator("note_file_extension")
    @classmethod
    def _normalize_extension(cls, v: str) -> str:
        """Make sure the extension carries its leading dot."""
        v = v.strip()
        if not v:
            raise ValueError("note_file_extension cannot be empty")
        return v if v.startswith(".") else f".{v}"

    @model_validator(mode="after")
    def _validate_limits(self) -> "KnowlingConfig":
        """Validate numeric settings."""
        if self.embedding_dim < 1:
            raise ValueError("embedding_dim must be >= 1")
        if self.embedding_batch_size < 1:
            raise ValueError("embedding_batch_size must be >= 1")
        if self.similar_notes_limit < 1:
            raise ValueError("similar_notes_limit must be >= 1")
        if self.similar_notes_threshold < 0:
            raise ValueError("similar_notes_threshold must be >= 0")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the SQLite URL of the relational store."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_vector_db_url(self) -> str:
        """Get the SQLite URL of the vector store."""
        db_path = self.get_absolute_path(self.vector_db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = KnowlingConfig()
