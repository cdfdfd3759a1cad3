"""Fubako: a personal markdown wiki with timestamp page IDs."""

__version__ = "0.1.0"
