"""The note collection: discovery, intent extraction and finding output."""

from .intents import extract_research_tasks
from .notes import Note, load_notes, parse_since

__all__ = ["Note", "extract_research_tasks", "load_notes", "parse_since"]
