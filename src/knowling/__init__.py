"""
Knowling - a notebook that keeps short text notes and finds similar ones.

Notes and their categories live in a relational SQLite store, while their
embeddings live in a sqlite-vec index. The NotebookService keeps both stores
in lockstep and answers "find notes similar to this one" queries.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("knowling")
except PackageNotFoundError:
    __version__ = "0.3.0"
