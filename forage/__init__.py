"""Forage — turns research intents in your notes into durable findings."""

__version__ = "0.3.0"
