"""
Formatter settings.

Settings are layered, later layers winning:

1. ``ServerSettings`` defaults
2. ``.fmtbridge.yml`` in the workspace root
3. Command line / environment overrides
4. Per-document settings pulled from the client (``workspace/configuration``)

The per-document layer is cached by URI. The cache is cleared when the
client reports a configuration change and the entry for a document is
dropped when the document is closed.
"""

from __future__ import annotations

import math
import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import yaml
from lsprotocol.types import DidCloseTextDocumentParams

from fmtbridge.formatter.errors import InvalidSettings

if TYPE_CHECKING:
    from fmtbridge.lsp.text_sync_manager import TextSyncManager


CONFIG_SECTION = "fmtbridge"
WORKSPACE_CONFIG_FILE = ".fmtbridge.yml"

# Client-side (camelCase) and file (snake_case) keys mapped to field names.
_KEYS = {
    "command": "command",
    "tempPrefix": "temp_prefix",
    "temp_prefix": "temp_prefix",
    "defaultExtension": "default_extension",
    "default_extension": "default_extension",
    "timeout": "timeout",
}


@dataclass(frozen=True)
class ServerSettings:
    """Settings used to run the external formatter."""

    command: list[str] = field(default_factory=list)
    temp_prefix: str = "fmtbridge"
    default_extension: str = ".txt"
    timeout: float = 10.0

    def merged(self, values: dict[str, Any] | None) -> ServerSettings:
        """
        Return a copy with ``values`` applied on top.

        Unknown keys and ``None`` values are ignored. ``command`` may be a
        list of arguments or a single shell-style string.

        Raises:
            ValueError: If a value has the wrong type or is out of range
        """
        if not values:
            return self

        changes: dict[str, Any] = {}
        for key, value in values.items():
            name = _KEYS.get(key)
            if name is None or value is None:
                continue

            if name == "command":
                changes[name] = parse_command(value)
            elif name == "timeout":
                changes[name] = parse_timeout(value)
            elif not isinstance(value, str):
                raise ValueError(f"{key} must be a string, got {value!r}")
            elif name == "default_extension":
                changes[name] = value if value.startswith(".") else f".{value}"
            else:
                changes[name] = value

        return replace(self, **changes)


def parse_command(value: Any) -> list[str]:
    """
    Normalize a formatter command to an argument list.

    Raises:
        ValueError: If the command is neither a string nor a list of strings
    """
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list) and all(isinstance(arg, str) for arg in value):
        return list(value)
    raise ValueError(f"command must be a string or a list of strings, got {value!r}")


def parse_timeout(value: Any) -> float:
    """
    Validate a timeout in seconds.

    Raises:
        ValueError: If the timeout is not a positive number
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"timeout must be a number of seconds, got {value!r}")
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"timeout must be positive, got {value!r}")
    return float(value)


def load_workspace_settings(workspace_root: Path) -> dict[str, Any]:
    """
    Read ``.fmtbridge.yml`` from the workspace root.

    Returns an empty dict when the file does not exist.

    Raises:
        ValueError: If the file is not a YAML mapping
    """
    config_file = workspace_root / WORKSPACE_CONFIG_FILE
    if not config_file.is_file():
        return {}

    with open(config_file, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_file} must contain a mapping")
    return data


# Fetches the client's settings section for one document.
ConfigurationFetcher = Callable[[str], Awaitable[Any]]


class SettingsCache:
    """
    Global settings plus a per-document cache of client settings.

    Usage:
        cache = SettingsCache(ServerSettings())
        cache.register_text_sync_hooks(text_sync_manager)

        settings = await cache.get_document_settings(uri)
    """

    def __init__(self, global_settings: ServerSettings | None = None) -> None:
        self.global_settings = global_settings or ServerSettings()
        # Set once the client is known to answer workspace/configuration.
        self.fetch_configuration: ConfigurationFetcher | None = None
        self._document_settings: dict[str, ServerSettings] = {}

    def register_text_sync_hooks(self, text_sync: TextSyncManager) -> None:
        text_sync.add_on_close_hook(self._on_close)

    async def _on_close(self, params: DidCloseTextDocumentParams) -> None:
        self.forget(params.text_document.uri)

    async def get_document_settings(self, uri: str) -> ServerSettings:
        """
        Settings for one document.

        Without client configuration support this is the global settings.
        Otherwise the client's section is fetched once and cached.

        Raises:
            InvalidSettings: If the client's section cannot be applied
        """
        if self.fetch_configuration is None:
            return self.global_settings

        cached = self._document_settings.get(uri)
        if cached is not None:
            return cached

        values = await self.fetch_configuration(uri)
        try:
            settings = self.global_settings.merged(values if isinstance(values, dict) else None)
        except ValueError as e:
            raise InvalidSettings(uri, str(e)) from e
        self._document_settings[uri] = settings
        return settings

    def update_global(self, values: dict[str, Any] | None) -> None:
        """
        Apply settings pushed by a client without configuration support.

        Raises:
            ValueError: If a pushed value is invalid. The global settings are
                        left unchanged.
        """
        if not isinstance(values, dict):
            return
        if isinstance(values.get(CONFIG_SECTION), dict):
            values = values[CONFIG_SECTION]
        self.global_settings = self.global_settings.merged(values)

    def clear(self) -> None:
        """Drop all cached per-document settings."""
        self._document_settings.clear()

    def forget(self, uri: str) -> None:
        """Drop the cached settings of one document."""
        self._document_settings.pop(uri, None)

    def __contains__(self, uri: object) -> bool:
        return uri in self._document_settings
