from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module exports run store backends.
"""

from .base import RunStore
from .in_memory import InMemoryRunStore
from .sqlite import SQLiteRunStore

__all__ = ["RunStore", "InMemoryRunStore", "SQLiteRunStore"]
