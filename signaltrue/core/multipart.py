# signaltrue/core/multipart.py
from __future__ import annotations

from collections import deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from signaltrue.core.errors import MalformedUpload
from signaltrue.services.ingestion_orchestrator import IncomingFile

Event = Tuple[str, object]


class MultipartFileReader:
    """
    Incremental multipart/form-data reader for a single file field.

    Bytes are pulled from the client only as the consumer asks for them, so
    whoever iterates IncomingFile.chunks decides how much of the body is ever
    read. Nothing is spooled to memory or disk here.
    """

    def __init__(self, body: AsyncIterator[bytes], content_type: Optional[str], *, field_name: str = "file"):
        ctype, params = parse_options_header(content_type or "")
        if ctype != b"multipart/form-data" or not params.get(b"boundary"):
            raise MalformedUpload("Expected a multipart/form-data request body.")

        self.field_name = field_name
        self._body = body
        self._queue: Deque[Event] = deque()
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._headers: Dict[bytes, bytes] = {}
        self._parser = MultipartParser(
            params[b"boundary"],
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
            },
        )
        self._events = self._iter_events()

    @classmethod
    def from_request(cls, request, *, field_name: str = "file") -> "MultipartFileReader":
        return cls(request.stream(), request.headers.get("content-type"), field_name=field_name)

    # ─────────────────────────────────────────────
    # PARSER CALLBACKS
    # ─────────────────────────────────────────────

    def _on_part_begin(self) -> None:
        self._headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[bytes(self._header_field).lower()] = bytes(self._header_value)
        self._header_field.clear()
        self._header_value.clear()

    def _on_headers_finished(self) -> None:
        self._queue.append(("headers", dict(self._headers)))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._queue.append(("data", bytes(data[start:end])))

    def _on_part_end(self) -> None:
        self._queue.append(("end", None))

    # ─────────────────────────────────────────────
    # EVENT STREAM
    # ─────────────────────────────────────────────

    async def _iter_events(self) -> AsyncIterator[Event]:
        try:
            async for chunk in self._body:
                self._parser.write(chunk)
                while self._queue:
                    yield self._queue.popleft()
            self._parser.finalize()
        except MultipartParseError as exc:
            raise MalformedUpload(f"Malformed multipart body: {exc}") from exc
        while self._queue:
            yield self._queue.popleft()

    async def open(self) -> IncomingFile:
        """
        Advance to the file field and return it. Other fields are skipped.
        """
        async for kind, payload in self._events:
            if kind != "headers":
                continue
            disposition, params = parse_options_header(payload.get(b"content-disposition", b""))
            if disposition != b"form-data":
                continue
            name = params.get(b"name", b"").decode("utf-8", errors="replace")
            if name != self.field_name or b"filename" not in params:
                continue

            filename = params[b"filename"].decode("utf-8", errors="replace")
            media_type = payload.get(b"content-type")
            return IncomingFile(
                filename=filename,
                declared_media_type=media_type.decode("latin-1") if media_type else None,
                chunks=self._file_chunks(),
            )

        raise MalformedUpload(f"Missing multipart file field '{self.field_name}'.", reason="missing_file")

    async def _file_chunks(self) -> AsyncIterator[bytes]:
        async for kind, payload in self._events:
            if kind == "data":
                yield payload
            elif kind == "end":
                return
        raise MalformedUpload("Upload ended before the file part was complete.")
