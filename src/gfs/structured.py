"""Typed payloads exchanged between the git accessor, formatter and patch engine."""

from __future__ import annotations

from dataclasses import dataclass, field

_BINARY_PROBE_BYTES = 8000


def _detect_newline(data: bytes) -> bytes:
    """Return the dominant line terminator in ``data`` (LF when there is none)."""
    crlf = data.count(b"\r\n")
    lf = data.count(b"\n") - crlf
    cr = data.count(b"\r") - crlf
    if crlf > lf and crlf >= cr:
        return b"\r\n"
    if cr > lf and cr > crlf:
        return b"\r"
    return b"\n"


@dataclass(frozen=True, slots=True)
class ByteContent:
    """One version of a file, tagged with the line terminator observed in it."""

    data: bytes
    newline: bytes = field(init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "newline", _detect_newline(self.data))

    def lines(self) -> list[bytes]:
        """Split into line tokens, each keeping its own terminator."""
        return self.data.splitlines(keepends=True)

    @property
    def is_binary(self) -> bool:
        return b"\0" in self.data[:_BINARY_PROBE_BYTES]

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class FileTarget:
    """Index entry for one path the caller asked to format."""

    path: str
    mode: str
    blob_id: str

    @property
    def is_regular(self) -> bool:
        return self.mode in {"100644", "100755"}
