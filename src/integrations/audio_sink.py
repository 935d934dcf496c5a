"""Audio sinks receiving the opaque media payloads of a call.

The protocol core never decodes audio; it hands each payload to a sink exactly
as received. Every handle must be closed on every termination path.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from calls.errors import SinkWriteError

LOGGER = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


@dataclass
class AudioHandle:
    session_id: str
    chunks_written: int = 0
    bytes_written: int = 0
    closed: bool = False


class AudioSink(ABC):
    """Per-session output resource for call audio."""

    def __init__(self) -> None:
        self._handles: dict[str, AudioHandle] = {}

    async def open(self, session_id: str) -> AudioHandle:
        handle = self._handles.get(session_id)
        if handle is not None and not handle.closed:
            return handle
        handle = AudioHandle(session_id=session_id)
        await self._open(handle)
        self._handles[session_id] = handle
        return handle

    async def write(self, handle: AudioHandle, payload: str) -> int:
        if handle.closed:
            raise SinkWriteError(f"Audio sink for session {handle.session_id} is closed")
        written = await self._write(handle, payload)
        handle.chunks_written += 1
        handle.bytes_written += written
        return written

    async def close(self, handle: AudioHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        if self._handles.get(handle.session_id) is handle:
            del self._handles[handle.session_id]
        await self._close(handle)
        LOGGER.info(
            "Closed audio sink for session %s (%d chunks, %d bytes)",
            handle.session_id,
            handle.chunks_written,
            handle.bytes_written,
        )

    @property
    def open_handles(self) -> int:
        return len(self._handles)

    @abstractmethod
    async def _open(self, handle: AudioHandle) -> None: ...

    @abstractmethod
    async def _write(self, handle: AudioHandle, payload: str) -> int: ...

    @abstractmethod
    async def _close(self, handle: AudioHandle) -> None: ...


def audio_file_name(session_id: str) -> str:
    """Map an untrusted session id onto a safe file name."""

    if _SAFE_NAME.match(session_id) and session_id not in {".", ".."}:
        return f"{session_id}.raw"
    digest = hashlib.sha256(session_id.encode("utf-8")).hexdigest()[:32]
    return f"{digest}.raw"


class FileAudioSink(AudioSink):
    """Appends base64 payloads, decoded to raw bytes, to one file per session."""

    def __init__(self, audio_dir: Path) -> None:
        super().__init__()
        self._audio_dir = audio_dir
        self._files: dict[int, BinaryIO] = {}

    def path_for(self, session_id: str) -> Path:
        return self._audio_dir / audio_file_name(session_id)

    async def _open(self, handle: AudioHandle) -> None:
        path = self.path_for(handle.session_id)

        def _open_file() -> BinaryIO:
            path.parent.mkdir(parents=True, exist_ok=True)
            return path.open("ab")

        self._files[id(handle)] = await asyncio.to_thread(_open_file)
        LOGGER.debug("Opened audio file %s", path)

    async def _write(self, handle: AudioHandle, payload: str) -> int:
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SinkWriteError(f"Audio payload is not valid base64: {exc}") from exc

        fh = self._files[id(handle)]

        def _append() -> None:
            fh.write(data)
            fh.flush()

        try:
            await asyncio.to_thread(_append)
        except OSError as exc:
            raise SinkWriteError(f"Failed to write audio for session {handle.session_id}") from exc
        return len(data)

    async def _close(self, handle: AudioHandle) -> None:
        fh = self._files.pop(id(handle), None)
        if fh is not None:
            await asyncio.to_thread(fh.close)


class MemoryAudioSink(AudioSink):
    """Keeps payloads in memory, keyed by session id."""

    def __init__(self) -> None:
        super().__init__()
        self.payloads: dict[str, list[str]] = {}
        self.closed_sessions: list[str] = []

    async def _open(self, handle: AudioHandle) -> None:
        self.payloads.setdefault(handle.session_id, [])

    async def _write(self, handle: AudioHandle, payload: str) -> int:
        self.payloads[handle.session_id].append(payload)
        return len(payload)

    async def _close(self, handle: AudioHandle) -> None:
        self.closed_sessions.append(handle.session_id)


def build_audio_sink(backend: str, audio_dir: Path) -> AudioSink:
    if backend == "memory":
        return MemoryAudioSink()
    return FileAudioSink(audio_dir)
