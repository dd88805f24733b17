from pathlib import Path

import yaml
from lsprotocol.types import (
    INITIALIZE,
    INITIALIZED,
    TEXT_DOCUMENT_FORMATTING,
    TEXT_DOCUMENT_RANGE_FORMATTING,
    WORKSPACE_DID_CHANGE_CONFIGURATION,
    DidChangeConfigurationParams,
    DocumentFormattingParams,
    DocumentRangeFormattingParams,
    InitializedParams,
    InitializeParams,
    MessageType,
    Range,
    TextEdit,
)
from pygls.uris import to_fs_path

from fmtbridge import __version__
from fmtbridge.formatter.errors import FormatterBridgeError
from fmtbridge.lsp.formatter_language_server import FormatterLanguageServer
from fmtbridge.workspace.settings import ServerSettings, load_workspace_settings


def create_server(overrides: dict | None = None) -> FormatterLanguageServer:
    """
    Creates and returns a configured Language Server instance.

    Args:
        overrides: Settings given on the command line. They win over the
                   workspace ``.fmtbridge.yml`` but not over settings the
                   client sends for a document.
    """
    server = FormatterLanguageServer("fmtbridge", __version__, overrides=overrides)

    @server.feature(INITIALIZE)
    def initialize(ls: FormatterLanguageServer, params: InitializeParams):
        """Record client capabilities and load the workspace settings file."""
        ls.negotiator.on_initialize(params)

        workspace_root = _workspace_root(params)
        if workspace_root is None:
            return

        try:
            file_settings = load_workspace_settings(workspace_root)
            global_settings = ServerSettings().merged(file_settings).merged(ls.overrides)
        except (OSError, ValueError, yaml.YAMLError) as e:
            ls.log_to_client(
                MessageType.Error, f"Ignoring invalid workspace settings: {e}"
            )
            return

        ls.settings_cache.global_settings = global_settings
        if file_settings:
            ls.log_to_client(
                MessageType.Info, f"Loaded formatter settings from {workspace_root}"
            )

    @server.feature(INITIALIZED)
    def initialized(ls: FormatterLanguageServer, params: InitializedParams):
        ls.negotiator.on_initialized()

    @server.feature(WORKSPACE_DID_CHANGE_CONFIGURATION)
    def did_change_configuration(
        ls: FormatterLanguageServer, params: DidChangeConfigurationParams
    ):
        if ls.negotiator.has_configuration_capability:
            # Settings are pulled again on the next request.
            ls.settings_cache.clear()
        else:
            try:
                ls.settings_cache.update_global(params.settings)
            except ValueError as e:
                ls.log_to_client(
                    MessageType.Error, f"Ignoring invalid formatter settings: {e}"
                )

    @server.feature(TEXT_DOCUMENT_FORMATTING)
    async def formatting(
        ls: FormatterLanguageServer, params: DocumentFormattingParams
    ) -> list[TextEdit]:
        return await format_document(ls, params.text_document.uri)

    @server.feature(TEXT_DOCUMENT_RANGE_FORMATTING)
    async def range_formatting(
        ls: FormatterLanguageServer, params: DocumentRangeFormattingParams
    ) -> list[TextEdit]:
        return await format_document(ls, params.text_document.uri, params.range)

    server.text_sync_manager.register_handlers()

    return server


async def format_document(
    ls: FormatterLanguageServer, uri: str, range: Range | None = None
) -> list[TextEdit]:
    """
    Run the formatter for one request.

    Errors are logged to the client and re-raised so the request is
    answered with an error response.
    """
    try:
        # Fail fast on unknown documents, before asking the client for settings.
        ls.documents.get(uri)
        settings = await ls.settings_cache.get_document_settings(uri)
        return await ls.bridge.format(uri, range, settings)
    except FormatterBridgeError as e:
        ls.log_to_client(MessageType.Error, e.message)
        raise


def _workspace_root(params: InitializeParams) -> Path | None:
    if params.workspace_folders:
        uri = params.workspace_folders[0].uri
    else:
        uri = params.root_uri

    if not uri:
        return None

    path = to_fs_path(uri)
    return Path(path) if path else None
