"""Voicecast: voice broadcast fan-out service."""

__version__ = "0.1.0"
