"""Persistence helpers."""

from .json_store import JsonFileStore, JsonLinesLog

__all__ = ["JsonFileStore", "JsonLinesLog"]
