"""External formatter integration."""
from .errors import (
    DocumentNotFound,
    FormatterBridgeError,
    FormatterSpawnError,
    FormatterTimeout,
    FormattingFailed,
    InvalidSettings,
    TemporaryFileIOError,
)

__all__ = [
    'DocumentNotFound',
    'FormatterBridgeError',
    'FormatterSpawnError',
    'FormatterTimeout',
    'FormattingFailed',
    'InvalidSettings',
    'TemporaryFileIOError',
]
