"""Workspace state for fmtbridge."""
from .document_store import DocumentStore
from .settings import ServerSettings, SettingsCache

__all__ = ['DocumentStore', 'ServerSettings', 'SettingsCache']
