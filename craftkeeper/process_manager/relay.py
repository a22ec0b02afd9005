"""I/O relay — drains server output through the translator and forwards input."""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

from craftkeeper.process_manager.translator import Translator

log = logging.getLogger(__name__)

# (display_name, translated_line) -> None
OutputSink = Callable[[str, str], None]

STOP_COMMAND = "stop"

MAX_LINE_BYTES = 1024 * 1024


def console_sink(name: str, line: str) -> None:
    """Default sink: ``[name] text`` on stdout."""
    print(f"[{name}] {line}", flush=True)


@dataclass
class RingBuffer:
    """Fixed-size ring buffer of recent output lines, tracked by sequence number."""

    max_lines: int = 1000
    _buf: deque[str] = field(default_factory=deque)
    _seq: int = 0  # monotonic sequence counter (one per append)

    def append(self, line: str) -> None:
        self._buf.append(line)
        self._seq += 1
        while len(self._buf) > self.max_lines:
            self._buf.popleft()

    @property
    def seq(self) -> int:
        return self._seq

    def tail(self, num_lines: int = 50) -> list[str]:
        if num_lines <= 0:
            return []
        return list(self._buf)[-num_lines:]


# ---------------------------------------------------------------------------
# Output side
# ---------------------------------------------------------------------------

async def read_line(stream: asyncio.StreamReader) -> bytes:
    """Read one line, however long it is. Returns b"" at EOF.

    ``StreamReader.readline`` gives up on lines longer than the reader's
    limit (64 KiB by default); here the line is pulled in pieces instead.
    A line that never ends is cut at MAX_LINE_BYTES and the rest is read
    as the next line.
    """
    chunks: list[bytes] = []
    size = 0
    while True:
        try:
            chunks.append(await stream.readuntil(b"\n"))
            break
        except asyncio.IncompleteReadError as exc:
            chunks.append(exc.partial)
            break
        except asyncio.LimitOverrunError as exc:
            piece = await stream.read(exc.consumed)
            chunks.append(piece)
            size += len(piece)
            if not piece or size >= MAX_LINE_BYTES:
                break
    return b"".join(chunks)


async def relay_output(
    stream: asyncio.StreamReader,
    name: str,
    translator: Translator,
    sink: OutputSink,
    buffer: RingBuffer | None = None,
) -> None:
    """Read lines until EOF, translate each and hand it to the sink.

    Ends on its own when the process exits and the pipe closes.
    """
    while True:
        raw = await read_line(stream)
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        text = translator.translate(line)
        if buffer is not None:
            buffer.append(text)
        try:
            sink(name, text)
        except Exception:
            log.exception("Output sink failed for [%s]", name)


# ---------------------------------------------------------------------------
# Input side
# ---------------------------------------------------------------------------

def classify_input(line: str) -> tuple[str, bool]:
    """Decide what to send for one caller line and whether to keep forwarding.

    ``stop`` (any case) is sent as ``stop`` and ends forwarding; everything
    else is sent verbatim and forwarding continues.
    """
    text = line.rstrip("\r\n")
    if text.lower() == STOP_COMMAND:
        return STOP_COMMAND, False
    return text, True


async def write_line(stdin: asyncio.StreamWriter, text: str) -> bool:
    """Write one newline-terminated line. Returns False if the pipe is gone."""
    try:
        stdin.write(f"{text}\n".encode())
        await stdin.drain()
    except (BrokenPipeError, ConnectionResetError, RuntimeError) as exc:
        # RuntimeError: asyncio refuses writes once the transport is closed
        log.warning("Could not write to server input: %s", exc)
        return False
    return True


async def forward_input(
    stdin: asyncio.StreamWriter,
    lines: AsyncIterator[str],
) -> bool:
    """Forward caller lines to the process until ``stop`` or end of input.

    Returns True if forwarding ended because ``stop`` was sent.
    """
    async for line in lines:
        text, keep_going = classify_input(line)
        if not await write_line(stdin, text):
            return False
        if not keep_going:
            return True
    return False


class ConsoleInput:
    """Async iterator of lines typed on the console.

    ``sys.stdin`` is read on a daemon thread so a blocked ``readline``
    never holds up interpreter shutdown once the server has exited.
    """

    def __init__(self, stream=None) -> None:
        self._stream = stream if stream is not None else sys.stdin
        self._queue: asyncio.Queue[str | None] | None = None
        self._thread: threading.Thread | None = None

    def _start(self) -> None:
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        queue = self._queue

        def _pump() -> None:
            while True:
                line = self._stream.readline()
                if loop.is_closed():
                    break
                loop.call_soon_threadsafe(queue.put_nowait, line or None)
                if not line:
                    break

        self._thread = threading.Thread(target=_pump, name="console-input", daemon=True)
        self._thread.start()

    def __aiter__(self) -> ConsoleInput:
        return self

    async def __anext__(self) -> str:
        if self._queue is None:
            self._start()
        line = await self._queue.get()
        if line is None:
            raise StopAsyncIteration
        return line
