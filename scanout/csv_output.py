"""Comma-separated output of field sets, one record per line."""

from __future__ import annotations

import logging
import sys
from typing import IO, Optional, Sequence

from .fieldset import Field, FieldSet, FieldType, FieldsetError

_log = logging.getLogger(__name__)


def _format_field(field: Field) -> str:
    kind = field.type
    if kind == FieldType.STRING:
        text = str(field.value)
        return f'"{text}"' if "," in text else text
    if kind == FieldType.UINT64:
        return str(int(field.value))  # type: ignore[arg-type]
    if kind == FieldType.BOOL:
        return str(int(bool(field.value)))
    if kind == FieldType.BINARY:
        return bytes(field.value).hex()  # type: ignore[arg-type]
    if kind == FieldType.NULL:
        return ""
    raise FieldsetError("received unknown output type")


def format_csv_row(fieldset: FieldSet) -> str:
    """Render the fields of ``fieldset`` as one CSV line, without the newline.

    Strings holding a comma are wrapped in double quotes, booleans are
    written as 0 or 1, binary values as lower-case hex and null fields
    as empty cells. Nested field sets cannot be written as CSV.
    """
    return ",".join(_format_field(field) for field in fieldset)


class CsvOutput:
    """Writes field sets to a text stream as CSV records."""

    def __init__(self, stream: IO[str], close_stream: bool = True) -> None:
        self.stream = stream
        self.close_stream = close_stream
        self.closed = False

    def process(self, fieldset: FieldSet) -> None:
        """Write one record and flush it."""
        self.stream.write(format_csv_row(fieldset) + "\n")
        self.stream.flush()

    def close(self) -> None:
        """Flush the stream and close it if this output opened it."""
        if self.closed:
            return
        self.closed = True
        self.stream.flush()
        if self.close_stream:
            self.stream.close()

    def __enter__(self) -> "CsvOutput":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def open_csv_output(
    filename: Optional[str],
    fields: Sequence[str],
    module_name: str = "csv",
) -> CsvOutput:
    """Open a CSV output on ``filename``, or on standard output.

    ``None`` or ``"-"`` selects standard output. A header line naming
    ``fields`` is written unless the module in use is ``"default"``.
    """
    if filename is None:
        _log.info("no output file selected, will use stdout")
        output = CsvOutput(sys.stdout, close_stream=False)
    elif filename == "-":
        output = CsvOutput(sys.stdout, close_stream=False)
    else:
        try:
            stream = open(filename, "w", encoding="utf-8", newline="")
        except OSError as exc:
            raise OSError(
                exc.errno, f"could not open CSV output file ({filename}): {exc.strerror}"
            ) from exc
        output = CsvOutput(stream, close_stream=True)
    if module_name != "default":
        _log.debug("more than one field, will add headers")
        output.stream.write(",".join(fields) + "\n")
    return output