from lsprotocol.types import LogMessageParams, MessageType, TextDocumentSyncKind
from pygls.lsp.server import LanguageServer

from fmtbridge.formatter.bridge import FormattingBridge
from fmtbridge.lsp.capabilities import CapabilityNegotiator
from fmtbridge.lsp.text_sync_manager import TextSyncManager
from fmtbridge.workspace.document_store import DocumentStore
from fmtbridge.workspace.settings import ServerSettings, SettingsCache


class FormatterLanguageServer(LanguageServer):
    """
    Language Server holding the state of one client session.

    Attributes:
        documents: Open documents, read from the pygls workspace
        settings_cache: Global and per-document formatter settings
        negotiator: Capabilities negotiated with the client
        text_sync_manager: didOpen/didChange/didClose handlers and hooks
        bridge: Runs the external formatter
        overrides: Command line settings, applied over the workspace file
    """

    def __init__(
        self,
        name: str,
        version: str,
        overrides: dict | None = None,
    ):
        super().__init__(name, version, text_document_sync_kind=TextDocumentSyncKind.Full)

        self.overrides: dict = overrides or {}
        self.documents = DocumentStore(self)
        self.settings_cache = SettingsCache(ServerSettings().merged(self.overrides))
        self.negotiator = CapabilityNegotiator(self)
        self.text_sync_manager = TextSyncManager(self)
        self.bridge = FormattingBridge(self.documents, log=self.log_to_client)

        self.settings_cache.register_text_sync_hooks(self.text_sync_manager)

    def log_to_client(self, message_type: MessageType, message: str) -> None:
        """Send a message to the client's log."""
        self.window_log_message(LogMessageParams(type=message_type, message=message))
