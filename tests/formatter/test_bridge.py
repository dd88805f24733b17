"""
Tests for fmtbridge/formatter/bridge.py

The formatter is a small Python script run with the current interpreter,
so these tests exercise real subprocesses and real temporary files.
"""
from __future__ import annotations

import asyncio
import os
import re
import signal
import sys
import textwrap
import time
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from lsprotocol.types import (
    MessageType,
    Position,
    Range,
    TextDocumentItem,
    TextDocumentSyncKind,
)
from pygls.workspace import Workspace

from fmtbridge.formatter.bridge import FormattingBridge
from fmtbridge.formatter.errors import (
    DocumentNotFound,
    FormatterSpawnError,
    FormatterTimeout,
    FormattingFailed,
    TemporaryFileIOError,
)
from fmtbridge.workspace.document_store import DocumentStore
from fmtbridge.workspace.settings import ServerSettings


def write_formatter(tmp_path: Path, name: str, body: str) -> list[str]:
    """Write a formatter script and return the command that runs it."""
    script = tmp_path / f"{name}.py"
    script.write_text(textwrap.dedent(body))
    return [sys.executable, str(script)]


IDENTITY = """
import sys
"""

FOO_FORMATTER = """
import sys
path = sys.argv[-1]
with open(path) as f:
    text = f.read()
with open(path, "w") as f:
    f.write(text.replace("foo( 1,2)", "foo(1, 2)"))
"""

UPPERCASE_SLOW = """
import sys, time
path = sys.argv[-1]
with open(sys.argv[1], "a") as log:
    log.write(path + "\\n")
time.sleep(0.2)
with open(path) as f:
    text = f.read()
with open(path, "w") as f:
    f.write(text.upper())
"""

CAPTURE_INPUT = """
import shutil, sys
shutil.copyfile(sys.argv[-1], sys.argv[1])
"""

FAILING = """
import sys
print("checking input")
sys.stderr.write("syntax error on line 1\\n")
sys.exit(3)
"""

CHATTY = """
import sys
print("formatted 1 file")
sys.stderr.write("warning: deprecated construct\\n")
"""

SLEEPER = """
import time
time.sleep(30)
"""

DELETE_OUTPUT = """
import os, sys
os.remove(sys.argv[-1])
"""

SPAWNS_SLEEPER = """
import subprocess, sys, time
child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
with open(sys.argv[1], "w") as f:
    f.write(str(child.pid))
time.sleep(30)
"""


def is_running(pid: int) -> bool:
    """True while ``pid`` exists and is not a zombie."""
    try:
        with open(f"/proc/{pid}/stat") as f:
            state = f.read().rsplit(")", 1)[1].split()[0]
    except FileNotFoundError:
        return False
    return state != "Z"


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    path = tmp_path / "tmp"
    path.mkdir()
    return path


@pytest.fixture
def store() -> DocumentStore:
    return DocumentStore(Mock(workspace=Workspace(None, TextDocumentSyncKind.Full)))


def open_document(store: DocumentStore, uri: str, text: str) -> None:
    store.server.workspace.put_text_document(
        TextDocumentItem(uri=uri, language_id="src", version=1, text=text)
    )


@pytest.fixture
def messages() -> list[tuple[MessageType, str]]:
    return []


@pytest.fixture
def bridge(store, temp_dir, messages) -> FormattingBridge:
    return FormattingBridge(
        store,
        log=lambda message_type, message: messages.append((message_type, message)),
        temp_dir=temp_dir,
    )


def settings_for(command: list[str], **kwargs) -> ServerSettings:
    return ServerSettings(command=command, **kwargs)


class TestFormattingBridgeSuccess:
    """Formatter exits 0."""

    @pytest.mark.asyncio
    async def test_identity_formatter_returns_whole_document(
        self, bridge, store, tmp_path
    ):
        """Unchanged output yields one edit spanning the whole document."""
        text = "line one\nline two\n"
        open_document(store, "file:///project/a.src", text)

        edits = await bridge.format(
            "file:///project/a.src",
            settings=settings_for(write_formatter(tmp_path, "identity", IDENTITY)),
        )

        assert len(edits) == 1
        assert edits[0].new_text == text
        assert edits[0].range == Range(
            start=Position(line=0, character=0),
            end=Position(line=2, character=0),
        )

    @pytest.mark.asyncio
    async def test_formats_whole_document(self, bridge, store, tmp_path):
        """End to end: the rewritten file comes back as the edit."""
        open_document(store, "file:///project/a.src", "foo( 1,2)")

        edits = await bridge.format(
            "file:///project/a.src",
            settings=settings_for(write_formatter(tmp_path, "foo", FOO_FORMATTER)),
        )

        assert len(edits) == 1
        assert edits[0].new_text == "foo(1, 2)"
        assert edits[0].range == Range(
            start=Position(line=0, character=0),
            end=Position(line=0, character=9),
        )

    @pytest.mark.asyncio
    async def test_range_sends_only_selected_text(self, bridge, store, tmp_path):
        """Only the substring selected by the range reaches the formatter."""
        capture = tmp_path / "captured.txt"
        command = write_formatter(tmp_path, "capture", CAPTURE_INPUT) + [str(capture)]
        open_document(store, "file:///project/a.src", "first\nfoo( 1,2)\nlast\n")
        selection = Range(
            start=Position(line=1, character=0),
            end=Position(line=1, character=9),
        )

        edits = await bridge.format(
            "file:///project/a.src", selection, settings=settings_for(command)
        )

        assert capture.read_text() == "foo( 1,2)"
        assert edits[0].range == selection
        assert edits[0].new_text == "foo( 1,2)"

    @pytest.mark.asyncio
    async def test_uses_default_settings(self, store, temp_dir, tmp_path):
        """Settings given to the constructor apply when a request has none."""
        open_document(store, "file:///project/a.src", "foo( 1,2)")
        bridge = FormattingBridge(
            store,
            settings=settings_for(write_formatter(tmp_path, "foo", FOO_FORMATTER)),
            temp_dir=temp_dir,
        )

        edits = await bridge.format("file:///project/a.src")

        assert edits[0].new_text == "foo(1, 2)"

    @pytest.mark.asyncio
    async def test_preserves_line_endings(self, bridge, store, tmp_path):
        """CRLF text survives the round trip through the temporary file."""
        text = "a\r\nb\r\n"
        open_document(store, "file:///project/a.src", text)

        edits = await bridge.format(
            "file:///project/a.src",
            settings=settings_for(write_formatter(tmp_path, "identity", IDENTITY)),
        )

        assert edits[0].new_text == text

    @pytest.mark.asyncio
    async def test_temp_file_removed_after_success(self, bridge, store, temp_dir, tmp_path):
        open_document(store, "file:///project/a.src", "foo( 1,2)")

        await bridge.format(
            "file:///project/a.src",
            settings=settings_for(write_formatter(tmp_path, "foo", FOO_FORMATTER)),
        )

        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_process_output_is_logged(self, bridge, store, messages, tmp_path):
        """stdout and stderr lines are forwarded to the log callback."""
        open_document(store, "file:///project/a.src", "x")

        await bridge.format(
            "file:///project/a.src",
            settings=settings_for(write_formatter(tmp_path, "chatty", CHATTY)),
        )

        logged = [message for _, message in messages]
        assert "stdout: formatted 1 file" in logged
        assert "stderr: warning: deprecated construct" in logged
        assert "Formatter exited with code 0" in logged

    @pytest.mark.asyncio
    async def test_concurrent_requests_do_not_collide(self, bridge, store, tmp_path):
        """Two documents formatted at once get distinct files and their own results."""
        seen = tmp_path / "seen.txt"
        command = write_formatter(tmp_path, "upper", UPPERCASE_SLOW) + [str(seen)]
        settings = settings_for(command)
        open_document(store, "file:///project/one.src", "first document")
        open_document(store, "file:///project/two.src", "second document")

        one, two = await asyncio.gather(
            bridge.format("file:///project/one.src", settings=settings),
            bridge.format("file:///project/two.src", settings=settings),
        )

        assert one[0].new_text == "FIRST DOCUMENT"
        assert two[0].new_text == "SECOND DOCUMENT"

        paths = seen.read_text().split()
        assert len(paths) == 2
        assert paths[0] != paths[1]


class TestFormattingBridgeFailures:
    """Every failure ends the request with an error."""

    @pytest.mark.asyncio
    async def test_unknown_document(self, bridge):
        with pytest.raises(DocumentNotFound) as exc_info:
            await bridge.format("file:///project/missing.src")

        assert exc_info.value.uri == "file:///project/missing.src"

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, bridge, store, temp_dir, tmp_path):
        """Non-zero exit fails the request with the exit code and stderr."""
        open_document(store, "file:///project/a.src", "foo(")

        with pytest.raises(FormattingFailed) as exc_info:
            await bridge.format(
                "file:///project/a.src",
                settings=settings_for(write_formatter(tmp_path, "failing", FAILING)),
            )

        assert exc_info.value.exit_code == 3
        assert "syntax error on line 1" in exc_info.value.stderr
        assert "syntax error on line 1" in str(exc_info.value)
        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_timeout_kills_formatter(self, bridge, store, temp_dir, messages, tmp_path):
        """A hanging formatter fails the request after the timeout."""
        open_document(store, "file:///project/a.src", "x")
        settings = settings_for(write_formatter(tmp_path, "sleeper", SLEEPER), timeout=0.5)

        started = time.monotonic()
        with pytest.raises(FormatterTimeout) as exc_info:
            await bridge.format("file:///project/a.src", settings=settings)

        assert time.monotonic() - started < 10
        assert exc_info.value.timeout == 0.5
        assert list(temp_dir.iterdir()) == []
        assert any(t == MessageType.Warning and "killed" in m for t, m in messages)

    @pytest.mark.asyncio
    async def test_cancellation_kills_formatter(self, bridge, store, temp_dir, tmp_path):
        open_document(store, "file:///project/a.src", "x")
        settings = settings_for(write_formatter(tmp_path, "sleeper", SLEEPER), timeout=60)

        task = asyncio.ensure_future(
            bridge.format("file:///project/a.src", settings=settings)
        )
        await asyncio.sleep(0.5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    @pytest.mark.skipif(not sys.platform.startswith("linux"), reason="reads /proc")
    async def test_timeout_kills_processes_started_by_formatter(
        self, bridge, store, tmp_path
    ):
        """A wrapper script's children die with it."""
        pid_file = tmp_path / "child.pid"
        command = write_formatter(tmp_path, "wrapper", SPAWNS_SLEEPER) + [str(pid_file)]
        open_document(store, "file:///project/a.src", "x")

        with pytest.raises(FormatterTimeout):
            await bridge.format(
                "file:///project/a.src", settings=settings_for(command, timeout=2)
            )

        child_pid = int(pid_file.read_text())
        try:
            deadline = time.monotonic() + 5
            while is_running(child_pid) and time.monotonic() < deadline:
                await asyncio.sleep(0.05)
            assert not is_running(child_pid)
        finally:
            if is_running(child_pid):
                os.kill(child_pid, signal.SIGKILL)

    @pytest.mark.asyncio
    async def test_missing_executable(self, bridge, store, temp_dir):
        open_document(store, "file:///project/a.src", "x")

        with pytest.raises(FormatterSpawnError) as exc_info:
            await bridge.format(
                "file:///project/a.src",
                settings=settings_for(["/nonexistent/formatter"]),
            )

        assert exc_info.value.command[0] == "/nonexistent/formatter"
        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_no_command_configured(self, bridge, store):
        open_document(store, "file:///project/a.src", "x")

        with pytest.raises(FormatterSpawnError) as exc_info:
            await bridge.format("file:///project/a.src")

        assert exc_info.value.command == []
        assert "no formatter configured" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_spawn_permission_error(self, bridge, store, temp_dir):
        """OS errors raised while spawning are reported as spawn errors."""
        open_document(store, "file:///project/a.src", "x")

        with patch("asyncio.create_subprocess_exec") as mock_exec:
            mock_exec.side_effect = PermissionError("Permission denied")

            with pytest.raises(FormatterSpawnError) as exc_info:
                await bridge.format(
                    "file:///project/a.src",
                    settings=settings_for(["/usr/local/bin/fmt.sh", "--quiet"]),
                )

            args = mock_exec.call_args.args
            assert args[:2] == ("/usr/local/bin/fmt.sh", "--quiet")
            assert args[2].startswith(str(temp_dir))
            assert args[2].endswith(".src")
            assert mock_exec.call_args.kwargs["start_new_session"] is True

        assert "Permission denied" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_output_file_missing(self, bridge, store, tmp_path):
        """Exit 0 without an output file is a temporary file error."""
        open_document(store, "file:///project/a.src", "x")

        with pytest.raises(TemporaryFileIOError):
            await bridge.format(
                "file:///project/a.src",
                settings=settings_for(write_formatter(tmp_path, "delete", DELETE_OUTPUT)),
            )

    @pytest.mark.asyncio
    async def test_unwritable_temp_dir(self, store, tmp_path):
        open_document(store, "file:///project/a.src", "x")
        bridge = FormattingBridge(store, temp_dir=tmp_path / "does-not-exist")

        with pytest.raises(TemporaryFileIOError):
            await bridge.format(
                "file:///project/a.src",
                settings=settings_for(write_formatter(tmp_path, "identity", IDENTITY)),
            )


class TestTempPathFor:
    """Tests for temporary file naming."""

    def test_name_pattern(self, bridge, temp_dir):
        path = bridge.temp_path_for(
            "file:///project/src/main.erl", ServerSettings(temp_prefix="erlang-formatter")
        )

        assert path.parent == temp_dir
        assert re.fullmatch(r"erlang-formatter-[0-9a-f-]{36}\.erl", path.name)

    def test_default_extension_without_suffix(self, bridge):
        path = bridge.temp_path_for("untitled:Untitled-1", ServerSettings())

        assert path.name.startswith("fmtbridge-")
        assert path.suffix == ".txt"

    def test_names_are_unique(self, bridge):
        settings = ServerSettings()
        paths = {bridge.temp_path_for("file:///a.src", settings) for _ in range(100)}

        assert len(paths) == 100
