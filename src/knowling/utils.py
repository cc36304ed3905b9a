"""Utility functions for the Knowling notebook."""

import re
from typing import List, Sequence

from knowling.models.schema import Note, first_line_of

UNTITLED = "Untitled"
MAX_TITLE_LENGTH = 100
_TITLE_HALF = 50

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_UNDERSCORE_RUNS = re.compile(r"_+")


def derive_title(text: str) -> str:
    """Derive a filesystem-safe title from the first line of a note.

    Leading ``#`` and space characters are stripped, every character
    outside ``[a-zA-Z0-9_-]`` becomes ``_`` and runs of ``_`` collapse to
    one. Underscores left at either end are dropped. Titles longer than
    100 characters keep their first and last 50 characters joined by
    ``...``.

    Examples:
        "# Hello, World!!" -> "Hello_World"
        "" -> "Untitled"

    Args:
        text: Note text.

    Returns:
        A non-empty title without extension.
    """
    title = first_line_of(text).lstrip("# ")
    title = _UNSAFE_CHARS.sub("_", title)
    title = _UNDERSCORE_RUNS.sub("_", title).strip("_")

    if not title:
        return UNTITLED
    if len(title) > MAX_TITLE_LENGTH:
        title = f"{title[:_TITLE_HALF]}...{title[-_TITLE_HALF:]}"
    return title


def unique_export_names(notes: Sequence[Note], extension: str = ".md") -> List[str]:
    """File names for an export batch, one per note in listing order.

    A title already taken earlier in the batch gets ``-dupe_{index}``
    appended, where ``index`` is the note's position in ``notes``. Titles
    are compared case-insensitively so the names stay distinct on
    case-insensitive filesystems.
    """
    used = set()
    names = []
    for index, note in enumerate(notes):
        title = derive_title(note.text)
        candidate = title
        while candidate.casefold() in used:
            candidate = f"{candidate}-dupe_{index}"
        used.add(candidate.casefold())
        names.append(f"{candidate}{extension}")
    return names
