"""Symbol file identifiers and their symbol server hash strings.

A symbol server addresses every file as ``<name>/<hash>/<name>``. The hash is
derived from the file's identity:

- executables use the PE header timestamp and image size,
- PDBs use the CodeView GUID and age,
- anything else can be addressed by a precomputed raw hash.

Formatting is exact: the executable timestamp is zero-padded to 8 lowercase hex
digits, the PDB GUID is 32 *uppercase* hex digits, and size/age are lowercase
hex with no padding.

Identifiers of the same kind compare and sort by their fields; ordering an
``ExeInfo`` against a ``PdbInfo`` raises ``TypeError``.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Union

_U32_MAX = 0xFFFFFFFF
_U128_MAX = (1 << 128) - 1

_GUID_HEX_RE = re.compile(r"^[0-9A-Fa-f]{32}$")


def _check_range(field_name: str, value: int, maximum: int):
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{field_name} must be an int, got {type(value).__name__}")
    if value < 0 or value > maximum:
        raise ValueError(f"{field_name} out of range: {value:#x}")


@dataclass(frozen=True, order=True)
class ExeInfo:
    """Executable file information relevant to a symbol server."""
    timestamp: int
    size: int

    def __post_init__(self):
        _check_range("timestamp", self.timestamp, _U32_MAX)
        _check_range("size", self.size, _U32_MAX)

    def __str__(self) -> str:
        return hash_string(self)


@dataclass(frozen=True, order=True)
class PdbInfo:
    """PDB file information relevant to a symbol server."""
    guid: int
    age: int

    def __post_init__(self):
        _check_range("guid", self.guid, _U128_MAX)
        _check_range("age", self.age, _U32_MAX)

    def __str__(self) -> str:
        return hash_string(self)

    @classmethod
    def from_guid_string(cls, guid: str, age: int) -> "PdbInfo":
        """
        Build a PdbInfo from a textual GUID.

        Accepts the forms debuggers print: ``{8-4-4-4-12}``, dashed without
        braces, or 32 bare hex digits. The text is read as written, so the
        bare form must already be in symbol server byte order.

        Args:
            guid: GUID text
            age: PDB age

        Returns:
            PdbInfo for the GUID/age pair
        """
        text = guid.strip()
        if text.startswith("{") and text.endswith("}"):
            text = text[1:-1]
        if "-" in text:
            try:
                value = uuid.UUID(text).int
            except ValueError:
                raise ValueError(f"invalid GUID: {guid!r}") from None
        elif _GUID_HEX_RE.match(text):
            value = int(text, 16)
        else:
            raise ValueError(f"invalid GUID: {guid!r}")
        return cls(guid=value, age=age)


@dataclass(frozen=True, order=True)
class RawHash:
    """A raw symsrv-compatible hash, used verbatim."""
    value: str

    def __post_init__(self):
        if not isinstance(self.value, str):
            raise TypeError(f"raw hash must be a str, got {type(self.value).__name__}")

    def __str__(self) -> str:
        return hash_string(self)


SymFileInfo = Union[ExeInfo, PdbInfo, RawHash]


def hash_string(info: SymFileInfo) -> str:
    """Return the middle component of the resource's path on a symbol server."""
    if isinstance(info, ExeInfo):
        return f"{info.timestamp:08x}{info.size:x}"
    if isinstance(info, PdbInfo):
        return f"{info.guid:032X}{info.age:x}"
    if isinstance(info, RawHash):
        return info.value
    raise TypeError(f"unsupported symbol identifier: {info!r}")
