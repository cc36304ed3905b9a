"""Data models for the Knowling notebook."""

import datetime
import uuid
from datetime import timezone
from typing import List, Optional, Set

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def utc_timestamp() -> int:
    """Current time as whole seconds since the epoch."""
    return int(utc_now().timestamp())


def generate_id() -> str:
    """Generate an opaque unique identifier for notes and categories.

    Returns:
        A canonical 36-character UUID4 string.
    """
    return str(uuid.uuid4())


def first_line_of(text: str) -> str:
    """Text up to the first ``\\n``, without a trailing ``\\r``."""
    return text.split("\n", 1)[0].rstrip("\r")


class Category(BaseModel):
    """A label that can be attached to any number of notes.

    Identity and equality are by ``id`` only. Label uniqueness (ignoring
    case) is enforced by the relational store, not by this model.
    """

    id: str = Field(default_factory=generate_id, description="Unique ID of the category")
    label: str = Field(..., description="Free-text label, unique ignoring case")

    model_config = {"frozen": True}

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: str) -> str:
        """Strip surrounding whitespace and reject empty labels."""
        v = v.strip()
        if not v:
            raise ValueError("Category label cannot be empty")
        return v

    @property
    def folded_label(self) -> str:
        """Label folded for case-insensitive comparison."""
        return self.label.casefold()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Category):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __str__(self) -> str:
        """Return string representation of category."""
        return self.label


class Note(BaseModel):
    """A user-authored text note.

    Two notes with the same ``id`` are the same entity regardless of
    their text, timestamps or categories.
    """

    id: str = Field(
        default_factory=generate_id,
        frozen=True,
        description="Unique ID of the note, immutable once created",
    )
    text: str = Field(..., description="UTF-8 content of the note")
    categories: Set[Category] = Field(
        default_factory=set, description="Categories attached to the note"
    )
    created_at: int = Field(
        default_factory=utc_timestamp, description="Creation time (epoch seconds)"
    )
    modified_at: int = Field(
        default_factory=utc_timestamp,
        description="Last modification time (epoch seconds)",
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the ID is not blank."""
        if not v or not v.strip():
            raise ValueError("Note ID cannot be empty")
        return v

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Note):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def has_category(self, category_id: str) -> bool:
        """Whether a category with this id is attached."""
        return any(c.id == category_id for c in self.categories)

    def add_category(self, category: Category) -> bool:
        """Attach a category. Returns False if it was already attached."""
        if category in self.categories:
            return False
        self.categories.add(category)
        return True

    def remove_category(self, category_id: str) -> bool:
        """Detach a category by id. Returns False if it was not attached."""
        remaining = {c for c in self.categories if c.id != category_id}
        if len(remaining) == len(self.categories):
            return False
        self.categories = remaining
        return True

    def touch(self, timestamp: Optional[int] = None) -> None:
        """Refresh the modification time."""
        self.modified_at = timestamp if timestamp is not None else utc_timestamp()

    @property
    def category_labels(self) -> List[str]:
        """Attached category labels, sorted case-insensitively."""
        return sorted((c.label for c in self.categories), key=str.casefold)

    @property
    def first_line(self) -> str:
        """First line of the note text."""
        return first_line_of(self.text)
