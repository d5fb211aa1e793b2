"""JSON output of field sets, one object per line."""

from __future__ import annotations

import json
import sys
from typing import IO, Any, Optional

from .fieldset import Field, FieldSet, FieldType, FieldsetError

_INT64_LIMIT = 1 << 63
_UINT64_LIMIT = 1 << 64


def hex_encode(data: bytes) -> str:
    """Return ``data`` as lower-case hexadecimal text."""
    return bytes(data).hex()


def _repeated_to_json(fieldset: FieldSet) -> list[Any]:
    return [field_to_json(field) for field in fieldset]


def field_to_json(field: Field) -> Any:
    """Convert one field into a JSON-ready Python value."""
    kind = field.type
    if kind == FieldType.STRING:
        return field.value
    if kind == FieldType.UINT64:
        number = int(field.value)  # type: ignore[arg-type]
        # Numbers are emitted as signed 64-bit integers.
        return number - _UINT64_LIMIT if number >= _INT64_LIMIT else number
    if kind == FieldType.BOOL:
        return bool(field.value)
    if kind == FieldType.BINARY:
        return hex_encode(field.value)  # type: ignore[arg-type]
    if kind == FieldType.NULL:
        return None
    if kind == FieldType.FIELDSET:
        return fieldset_to_json(field.value)  # type: ignore[arg-type]
    if kind == FieldType.REPEATED:
        return _repeated_to_json(field.value)  # type: ignore[arg-type]
    raise FieldsetError(f"received unknown output type: {int(kind)}")


def fieldset_to_json(fieldset: FieldSet) -> dict[str, Any]:
    """Convert a field set into a dictionary keyed by field name."""
    return {field.name: field_to_json(field) for field in fieldset}  # type: ignore[misc]


def to_json_line(fieldset: FieldSet) -> str:
    """Serialise ``fieldset`` as a single line of JSON, without the newline."""
    return json.dumps(fieldset_to_json(fieldset), ensure_ascii=False)


def print_json_fieldset(fieldset: FieldSet, stream: Optional[IO[str]] = None) -> None:
    """Write ``fieldset`` as one JSON line to ``stream`` (standard output by default)."""
    target = sys.stdout if stream is None else stream
    target.write(to_json_line(fieldset) + "\n")


class JsonOutput:
    """Writes field sets to a text stream as JSON lines."""

    def __init__(self, stream: IO[str], close_stream: bool = True) -> None:
        self.stream = stream
        self.close_stream = close_stream
        self.closed = False

    def process(self, fieldset: FieldSet) -> None:
        """Write one record and flush it."""
        self.stream.write(to_json_line(fieldset) + "\n")
        self.stream.flush()

    def close(self) -> None:
        """Flush the stream and close it if this output opened it."""
        if self.closed:
            return
        self.closed = True
        self.stream.flush()
        if self.close_stream:
            self.stream.close()

    def __enter__(self) -> "JsonOutput":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def open_json_output(filename: Optional[str]) -> JsonOutput:
    """Open a JSON output on ``filename``; ``None`` or ``"-"`` means standard output."""
    if filename is None or filename == "-":
        return JsonOutput(sys.stdout, close_stream=False)
    try:
        stream = open(filename, "w", encoding="utf-8")
    except OSError as exc:
        raise OSError(
            exc.errno, f"could not open JSON output file ({filename}): {exc.strerror}"
        ) from exc
    return JsonOutput(stream, close_stream=True)