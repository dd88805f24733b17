"""
Capability negotiation.

The server advertises:
   - textDocumentSync: Full (whole document on every change)
   - documentFormattingProvider: textDocument/formatting
   - documentRangeFormattingProvider: textDocument/rangeFormatting

pygls derives these from the features registered in ``create_server`` and
the sync kind passed to the server, so this module only deals with what
the client supports:
   - workspace/configuration: per-document settings are pulled from the
     client and workspace/didChangeConfiguration is registered dynamically
   - workspace folders: didChangeWorkspaceFolders events are logged
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from lsprotocol.types import (
    WORKSPACE_DID_CHANGE_CONFIGURATION,
    WORKSPACE_DID_CHANGE_WORKSPACE_FOLDERS,
    ConfigurationItem,
    ConfigurationParams,
    DidChangeWorkspaceFoldersParams,
    InitializeParams,
    MessageType,
    Registration,
    RegistrationParams,
)

from fmtbridge.workspace.settings import CONFIG_SECTION

if TYPE_CHECKING:
    from fmtbridge.lsp.formatter_language_server import FormatterLanguageServer


class CapabilityNegotiator:
    """
    Records what the client supports and subscribes to optional
    notifications once the handshake is complete.
    """

    def __init__(self, server: FormatterLanguageServer) -> None:
        self.server = server
        self.has_configuration_capability = False
        self.has_workspace_folder_capability = False
        self._workspace_folders_subscribed = False

    def on_initialize(self, params: InitializeParams) -> None:
        """Read the client capabilities we care about."""
        workspace = params.capabilities.workspace

        self.has_configuration_capability = bool(workspace and workspace.configuration)
        self.has_workspace_folder_capability = bool(
            workspace and workspace.workspace_folders
        )

        if self.has_configuration_capability:
            self.server.settings_cache.fetch_configuration = self.fetch_configuration
        else:
            self.server.settings_cache.fetch_configuration = None

    def on_initialized(self) -> None:
        """Subscribe to the notifications the client can send."""
        if self.has_configuration_capability:
            self.server.client_register_capability(
                RegistrationParams(
                    registrations=[
                        Registration(
                            id=str(uuid.uuid4()),
                            method=WORKSPACE_DID_CHANGE_CONFIGURATION,
                        )
                    ]
                )
            )

        if self.has_workspace_folder_capability and not self._workspace_folders_subscribed:
            self.server.feature(WORKSPACE_DID_CHANGE_WORKSPACE_FOLDERS)(
                did_change_workspace_folders
            )
            self._workspace_folders_subscribed = True

    async def fetch_configuration(self, uri: str) -> Any:
        """Ask the client for the ``fmtbridge`` section scoped to ``uri``."""
        result = await self.server.workspace_configuration_async(
            ConfigurationParams(
                items=[ConfigurationItem(scope_uri=uri, section=CONFIG_SECTION)]
            )
        )
        return result[0] if result else None


def did_change_workspace_folders(
    ls: FormatterLanguageServer, params: DidChangeWorkspaceFoldersParams
) -> None:
    ls.log_to_client(MessageType.Log, "Workspace folder change event received.")
