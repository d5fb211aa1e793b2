"""Typed, ordered field sets that probe results are collected into.

A probe fills a :class:`FieldSet` with named, typed values. The output
stage may see only some of those fields, in an order the user chose; a
:class:`Translation` records which fields to keep and in what order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Iterator, Optional, Sequence, Union

MAX_FIELDS = 128
MAX_LIST_LENGTH = 255

_UINT64_LIMIT = 1 << 64
_REPLACEMENT = "\ufffd"


class FieldType(IntEnum):
    """Kinds of value a field can hold."""

    RESERVED = 0
    STRING = 1
    UINT64 = 2
    BINARY = 3
    NULL = 4
    FIELDSET = 5
    REPEATED = 6
    BOOL = 7


class FieldsetError(Exception):
    """Raised when a field set or field definition set is misused."""


@dataclass(frozen=True)
class FieldDef:
    """Description of a field a probe module can produce."""

    name: str
    type: str
    desc: str = ""


@dataclass
class FieldDefSet:
    """Ordered collection of field definitions offered by a probe module."""

    defs: list[FieldDef] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.defs)

    def __iter__(self) -> Iterator[FieldDef]:
        return iter(self.defs)

    def __getitem__(self, index: int) -> FieldDef:
        return self.defs[index]

    def extend(self, defs: Iterable[FieldDef]) -> None:
        """Append definitions, refusing to grow past MAX_FIELDS."""
        new_defs = list(defs)
        if len(self.defs) + len(new_defs) > MAX_FIELDS:
            raise FieldsetError("out of room in field def set")
        self.defs.extend(new_defs)

    def index_of(self, name: str) -> int:
        """Return the position of the definition called ``name``.

        Raises KeyError when no definition has that name.
        """
        for position, definition in enumerate(self.defs):
            if definition.name == name:
                return position
        raise KeyError(name)


@dataclass
class Field:
    """A single named, typed value."""

    name: Optional[str]
    type: FieldType
    value: object = None


def sanitize_utf8(data: bytes) -> str:
    """Decode UTF-8, replacing every byte of an invalid sequence with U+FFFD."""
    parts: list[str] = []
    remaining = bytes(data)
    while True:
        try:
            parts.append(remaining.decode("utf-8"))
            return "".join(parts)
        except UnicodeDecodeError as exc:
            parts.append(remaining[: exc.start].decode("utf-8"))
            parts.append(_REPLACEMENT)
            remaining = remaining[exc.start + 1 :]


def _check_uint64(value: int) -> int:
    number = int(value)
    if not 0 <= number < _UINT64_LIMIT:
        raise ValueError(f"value {value!r} does not fit in an unsigned 64-bit field")
    return number


class FieldSet:
    """An ordered set of fields, or a repeated list of one field type."""

    def __init__(self) -> None:
        self.fields: list[Field] = []
        self.type: FieldType = FieldType.FIELDSET
        self.inner_type: Optional[FieldType] = None

    @classmethod
    def new_repeated(cls, inner_type: FieldType) -> "FieldSet":
        """Create a repeated field whose elements all have ``inner_type``."""
        repeated = cls()
        repeated.type = FieldType.REPEATED
        repeated.inner_type = FieldType(inner_type)
        return repeated

    def __len__(self) -> int:
        return len(self.fields)

    def __iter__(self) -> Iterator[Field]:
        return iter(self.fields)

    def __getitem__(self, index: int) -> Field:
        return self.fields[index]

    def __repr__(self) -> str:
        return f"FieldSet(type={self.type.name}, fields={self.fields!r})"

    def _add(self, name: Optional[str], kind: FieldType, value: object) -> None:
        if len(self.fields) + 1 >= MAX_FIELDS:
            raise FieldsetError("out of room in fieldset")
        if self.type is FieldType.REPEATED and self.inner_type is not kind:
            raise FieldsetError(
                "object added to repeated field does not match type of repeated field."
            )
        self.fields.append(Field(name, kind, value))

    def _modify(self, name: str, kind: FieldType, value: object) -> None:
        for existing in self.fields:
            if existing.name == name:
                existing.type = kind
                existing.value = value
                return
        self._add(name, kind, value)

    def add_null(self, name: Optional[str]) -> None:
        self._add(name, FieldType.NULL, None)

    def add_string(self, name: Optional[str], value: str) -> None:
        self._add(name, FieldType.STRING, value)

    def add_unsafe_string(self, name: Optional[str], value: Union[str, bytes]) -> None:
        """Add a string that may hold invalid UTF-8, repairing it if needed."""
        if isinstance(value, (bytes, bytearray, memoryview)):
            value = sanitize_utf8(bytes(value))
        self._add(name, FieldType.STRING, value)

    def chkadd_string(self, name: Optional[str], value: Optional[str]) -> None:
        """Add ``value`` as a string, or a null field when it is None."""
        if value is None:
            self.add_null(name)
        else:
            self.add_string(name, value)

    def chkadd_unsafe_string(
        self, name: Optional[str], value: Union[str, bytes, None]
    ) -> None:
        """Add ``value`` as a repaired string, or a null field when it is None."""
        if value is None:
            self.add_null(name)
        else:
            self.add_unsafe_string(name, value)

    def add_uint64(self, name: Optional[str], value: int) -> None:
        self._add(name, FieldType.UINT64, _check_uint64(value))

    def add_bool(self, name: Optional[str], value: object) -> None:
        self._add(name, FieldType.BOOL, bool(value))

    def add_binary(self, name: Optional[str], value: bytes) -> None:
        self._add(name, FieldType.BINARY, bytes(value))

    def add_fieldset(self, name: Optional[str], child: "FieldSet") -> None:
        if not isinstance(child, FieldSet):
            raise FieldsetError("child of a fieldset field must be a FieldSet")
        self._add(name, FieldType.FIELDSET, child)

    def add_repeated(self, name: Optional[str], child: "FieldSet") -> None:
        if not isinstance(child, FieldSet):
            raise FieldsetError("child of a repeated field must be a FieldSet")
        self._add(name, FieldType.REPEATED, child)

    def modify_null(self, name: str) -> None:
        self._modify(name, FieldType.NULL, None)

    def modify_string(self, name: str, value: str) -> None:
        self._modify(name, FieldType.STRING, value)

    def modify_uint64(self, name: str, value: int) -> None:
        self._modify(name, FieldType.UINT64, _check_uint64(value))

    def modify_bool(self, name: str, value: object) -> None:
        self._modify(name, FieldType.BOOL, bool(value))

    def modify_binary(self, name: str, value: bytes) -> None:
        self._modify(name, FieldType.BINARY, bytes(value))

    def get_uint64(self, index: int) -> int:
        return self.fields[index].value  # type: ignore[return-value]

    def get_string(self, index: int) -> Optional[str]:
        return self.fields[index].value  # type: ignore[return-value]

    def translate(self, translation: "Translation") -> "FieldSet":
        """Return a new field set holding the selected fields in order."""
        result = FieldSet()
        result.fields = [self.fields[index] for index in translation.indices]
        return result


@dataclass(frozen=True)
class Translation:
    """Indices of the fields to pass on, in output order."""

    indices: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if len(self.indices) > MAX_FIELDS:
            raise FieldsetError("translation has more than MAX_FIELDS entries")

    def __len__(self) -> int:
        return len(self.indices)


def make_translation(avail: FieldDefSet, requested: Sequence[str]) -> Translation:
    """Build a translation selecting ``requested`` fields from ``avail``."""
    indices = []
    for name in requested:
        try:
            indices.append(avail.index_of(name))
        except KeyError:
            raise FieldsetError(
                f"specified field ({name}) not available in selected probe module."
            ) from None
    return Translation(tuple(indices))


def full_translation(avail: FieldDefSet) -> Translation:
    """Build a translation passing on every available field in order."""
    return Translation(tuple(range(len(avail))))