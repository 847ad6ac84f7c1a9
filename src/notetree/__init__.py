"""
notetree - a hierarchical note store.

Notes form a forest through parent pointers and, like pages, carry typed
key/value properties. The package provides an ancestor-aware property
resolver and an atomic batch mutation engine on top of a SQLite entity store.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notetree")
except PackageNotFoundError:
    __version__ = "0.3.0"
