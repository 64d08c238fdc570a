"""Incremental multipart/form-data reader.

Wraps ``python-multipart``'s push parser so an upload can be written to
storage while the request body is still arriving. Each fed chunk yields a
list of part events:

    (PART_BEGIN, filename_or_None)
    (PART_DATA,  bytes)
    (PART_END,   None)

``filename`` is None for plain form fields.
"""
import logging
from typing import Dict, List, Optional, Tuple

from python_multipart.exceptions import FormParserError
from python_multipart.multipart import MultipartParser, parse_options_header

from .errors import BadRequestError

logger = logging.getLogger(__name__)

PART_BEGIN = "begin"
PART_DATA = "data"
PART_END = "end"

PartEvent = Tuple[str, object]


def parse_boundary(content_type: Optional[str]) -> bytes:
    """Extract the multipart boundary from a Content-Type header.

    Raises:
        BadRequestError: If the body is not multipart/form-data.
    """
    if not content_type:
        raise BadRequestError("Bad Request: expected multipart/form-data")
    media_type, params = parse_options_header(content_type)
    if media_type.lower() != b"multipart/form-data":
        raise BadRequestError("Bad Request: expected multipart/form-data")
    boundary = params.get(b"boundary")
    if not boundary:
        raise BadRequestError("Bad Request: missing multipart boundary")
    return boundary


class MultipartStream:
    """Push-style multipart parser producing part events.

    Args:
        boundary: Boundary from :func:`parse_boundary`.
        charset:  Encoding used to decode part filenames.
    """

    def __init__(self, boundary: bytes, charset: str = "utf-8") -> None:
        self._charset = charset
        self._events: List[PartEvent] = []
        self._headers: Dict[bytes, bytes] = {}
        self._header_field = b""
        self._header_value = b""
        self._ended = False
        self._parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_end": self._on_end,
            },
        )

    # ------------------------------------------------------------------
    # Feeding
    # ------------------------------------------------------------------

    def feed(self, chunk: bytes) -> List[PartEvent]:
        """Parse *chunk* and return the events it completed."""
        try:
            self._parser.write(chunk)
        except FormParserError as exc:
            logger.info("Rejected malformed multipart body: %s", exc)
            raise BadRequestError("Bad Request: malformed multipart body") from exc
        return self._drain()

    def finish(self) -> List[PartEvent]:
        """Signal end of body; raises if the closing boundary never arrived."""
        try:
            self._parser.finalize()
        except FormParserError as exc:
            raise BadRequestError("Bad Request: malformed multipart body") from exc
        if not self._ended:
            raise BadRequestError("Bad Request: incomplete multipart body")
        return self._drain()

    def _drain(self) -> List[PartEvent]:
        events, self._events = self._events, []
        return events

    # ------------------------------------------------------------------
    # Parser callbacks
    # ------------------------------------------------------------------

    def _on_part_begin(self) -> None:
        self._headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[self._header_field.strip().lower()] = self._header_value.strip()
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        self._events.append((PART_BEGIN, self._filename()))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if end > start:
            self._events.append((PART_DATA, bytes(data[start:end])))

    def _on_part_end(self) -> None:
        self._events.append((PART_END, None))

    def _on_end(self) -> None:
        self._ended = True

    def _filename(self) -> Optional[str]:
        disposition = self._headers.get(b"content-disposition")
        if not disposition:
            return None
        _, options = parse_options_header(disposition)
        filename = options.get(b"filename")
        if filename is None:
            return None
        return filename.decode(self._charset, errors="replace")
