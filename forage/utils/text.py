"""Small text helpers shared by the writer and the browser strategy."""

from __future__ import annotations

import re

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(value: str, max_len: int = 50) -> str:
    """'Vector DB: comparison!' → 'vector-db-comparison'"""
    return _NON_SLUG.sub("-", value.lower()).strip("-")[:max_len]


def escape_quotes(value: str) -> str:
    return value.replace('"', '\\"')
