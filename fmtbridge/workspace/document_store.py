"""
Document Store

Read access to the documents currently open in the editor.

pygls keeps the text of open documents in the server's workspace, updating
it from didOpen, didChange and didClose before any of our hooks run. The
store only looks documents up there and converts client positions, which
are counted in the position encoding negotiated at initialize.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import unquote

from lsprotocol.types import Position, Range
from pygls.workspace import TextDocument

from fmtbridge.formatter.errors import DocumentNotFound

if TYPE_CHECKING:
    from pygls.lsp.server import LanguageServer


class DocumentStore:
    """
    Lookup of open documents in the server's workspace.

    Usage:
        store = DocumentStore(server)

        text = store.get_text(uri)
        selection = store.get_text(uri, range)
        whole = store.full_range(uri)
    """

    def __init__(self, server: LanguageServer) -> None:
        self.server = server

    def _open_documents(self) -> dict[str, TextDocument]:
        return self.server.workspace.text_documents

    def get(self, uri: str) -> TextDocument:
        """
        Get an open document.

        Raises:
            DocumentNotFound: If the document is not open
        """
        try:
            return self._open_documents()[unquote(uri)]
        except KeyError:
            raise DocumentNotFound(uri) from None

    def get_text(self, uri: str, range: Range | None = None) -> str:
        """
        Get the current text of a document, or of a range within it.

        Characters past the end of a line select up to the end of that
        line. Lines past the end of the document select up to its end.

        Raises:
            DocumentNotFound: If the document is not open
        """
        document = self.get(uri)
        if range is None:
            return document.source

        start = offset_at(document, range.start)
        end = offset_at(document, range.end)
        return document.source[start:end]

    def full_range(self, uri: str) -> Range:
        """
        Range covering the whole document.

        Raises:
            DocumentNotFound: If the document is not open
        """
        document = self.get(uri)
        return Range(start=Position(line=0, character=0), end=end_position(document))

    def __contains__(self, uri: object) -> bool:
        return isinstance(uri, str) and unquote(uri) in self._open_documents()

    def __len__(self) -> int:
        return len(self._open_documents())


def offset_at(document: TextDocument, position: Position) -> int:
    """Index into ``document.source`` for a position in client units."""
    lines = document.lines
    if position.line >= len(lines):
        return len(document.source)

    content = lines[position.line].rstrip("\r\n")
    character = min(position.character, document.position_codec.client_num_units(content))
    # pygls rewrites the character of positions past the line end, so it
    # only ever sees a fresh one.
    return document.offset_at_position(Position(line=position.line, character=character))


def end_position(document: TextDocument) -> Position:
    """Position after the last character of the document, in client units."""
    lines = document.lines
    if not lines:
        return Position(line=0, character=0)

    last = lines[-1]
    if last.endswith(("\n", "\r")):
        return Position(line=len(lines), character=0)

    return Position(
        line=len(lines) - 1,
        character=document.position_codec.client_num_units(last),
    )
