"""
Formatting Bridge

Delegates formatting to an external command. For each request the text to
format is written to a uniquely named temporary file, the formatter is run
with that file as its last argument, and on success the rewritten file is
returned to the client as a single TextEdit.

The formatter contract:
    <command...> <temp-file>
    - rewrite <temp-file> in place
    - exit 0 on success, non-zero on failure (diagnostics on stderr)
"""

from __future__ import annotations

import asyncio
import os
import signal
import tempfile
import uuid
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Callable
from urllib.parse import unquote, urlparse

from lsprotocol.types import MessageType, Range, TextEdit

from fmtbridge.formatter.errors import (
    FormatterSpawnError,
    FormatterTimeout,
    FormattingFailed,
    TemporaryFileIOError,
)
from fmtbridge.workspace.settings import ServerSettings

if TYPE_CHECKING:
    from fmtbridge.workspace.document_store import DocumentStore


LogCallback = Callable[[MessageType, str], None]


def _no_log(message_type: MessageType, message: str) -> None:
    pass


class FormattingBridge:
    """
    Runs the external formatter for open documents.

    Usage:
        bridge = FormattingBridge(documents, settings, log=log)
        edits = await bridge.format(uri)
        edits = await bridge.format(uri, range)
    """

    def __init__(
        self,
        documents: DocumentStore,
        settings: ServerSettings | None = None,
        log: LogCallback | None = None,
        temp_dir: Path | None = None,
    ) -> None:
        """
        Initialize the bridge.

        Args:
            documents: Store giving access to the open documents
            settings: Default settings, used when a request passes none
            log: Receives process output and progress messages
            temp_dir: Directory for temporary files (system default if None)
        """
        self.documents = documents
        self.settings = settings or ServerSettings()
        self.log = log or _no_log
        self.temp_dir = temp_dir or Path(tempfile.gettempdir())

    async def format(
        self,
        uri: str,
        range: Range | None = None,
        settings: ServerSettings | None = None,
    ) -> list[TextEdit]:
        """
        Format a document, or a range of it.

        Args:
            uri: URI of an open document
            range: Restrict formatting to this range (whole document if None)
            settings: Settings for this request

        Returns:
            A one-element list whose edit replaces ``range`` (or the whole
            document) with the formatter's output

        Raises:
            DocumentNotFound: If the document is not open
            TemporaryFileIOError: If the temporary file cannot be written or read
            FormatterSpawnError: If the formatter cannot be started
            FormattingFailed: If the formatter exits non-zero
            FormatterTimeout: If the formatter runs past the timeout
        """
        settings = settings or self.settings
        text = self.documents.get_text(uri, range)
        edit_range = range if range is not None else self.documents.full_range(uri)

        temp_path = self.temp_path_for(uri, settings)
        self.log(MessageType.Log, f"Formatting {uri} using {temp_path}")

        try:
            self._write(temp_path, text)
            exit_code, stderr = await self._run(settings, temp_path)
            if exit_code != 0:
                raise FormattingFailed(exit_code, stderr)
            new_text = self._read(temp_path)
        finally:
            self._remove(temp_path)

        return [TextEdit(range=edit_range, new_text=new_text)]

    def temp_path_for(self, uri: str, settings: ServerSettings) -> Path:
        """Unique temporary file path: ``<prefix>-<uuid>.<ext>``."""
        suffix = PurePosixPath(unquote(urlparse(uri).path)).suffix
        extension = suffix or settings.default_extension
        return self.temp_dir / f"{settings.temp_prefix}-{uuid.uuid4()}{extension}"

    def _write(self, path: Path, text: str) -> None:
        try:
            # newline="" keeps the document's own line endings.
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(text)
        except OSError as e:
            raise TemporaryFileIOError(str(path), str(e)) from e

    def _read(self, path: Path) -> str:
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise TemporaryFileIOError(str(path), str(e)) from e

    def _remove(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            self.log(MessageType.Warning, f"Could not remove {path}: {e}")

    async def _run(self, settings: ServerSettings, path: Path) -> tuple[int, str]:
        """
        Run the formatter on ``path``.

        stdout and stderr are forwarded to the log line by line as they
        arrive. stderr is also collected for error reporting.

        Returns:
            (exit code, collected stderr)
        """
        if not settings.command:
            raise FormatterSpawnError([], "no formatter command configured")

        cmd = [*settings.command, str(path)]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise FormatterSpawnError(cmd, str(e)) from e

        stderr_lines: list[str] = []

        async def communicate() -> int:
            await asyncio.gather(
                self._forward(process.stdout, "stdout", None),
                self._forward(process.stderr, "stderr", stderr_lines),
            )
            return await process.wait()

        try:
            exit_code = await asyncio.wait_for(communicate(), timeout=settings.timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            raise FormatterTimeout(settings.timeout) from None
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        self.log(MessageType.Log, f"Formatter exited with code {exit_code}")
        return exit_code, "".join(stderr_lines)

    async def _forward(
        self,
        stream: asyncio.StreamReader | None,
        name: str,
        sink: list[str] | None,
    ) -> None:
        if stream is None:
            return

        while True:
            line = await stream.readline()
            if not line:
                break

            decoded = line.decode("utf-8", errors="replace")
            if sink is not None:
                sink.append(decoded)
            self.log(MessageType.Log, f"{name}: {decoded.rstrip()}")

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        """Kill the formatter and anything it started."""
        # The formatter leads its own process group (start_new_session).
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        await process.wait()
        self.log(MessageType.Warning, f"Formatter process {process.pid} killed")
