"""Incremental delimiter-based record splitter."""

from typing import List


class BufferedTokenizer:
    """
    Splits a byte stream into delimited records.

    Data is fed in arbitrary chunks; complete records are returned as soon as
    their delimiter arrives and any trailing partial record is held until a
    later chunk completes it.
    """

    def __init__(self, delimiter: bytes = b"\n"):
        if not delimiter:
            raise ValueError("delimiter must not be empty")
        self.delimiter = delimiter
        self._buffer = bytearray()

    def extract(self, data: bytes) -> List[bytes]:
        """
        Feed a chunk and return the records it completes.

        Returned records do not include the delimiter.
        """
        # only the appended bytes, plus a possible straddling delimiter, are new
        start = max(0, len(self._buffer) - len(self.delimiter) + 1)
        self._buffer.extend(data)
        if self._buffer.find(self.delimiter, start) == -1:
            return []
        parts = self._buffer.split(self.delimiter)
        self._buffer = parts.pop()
        return [bytes(part) for part in parts]

    def flush(self) -> bytes:
        """Return and clear the buffered partial record."""
        remainder = bytes(self._buffer)
        self._buffer.clear()
        return remainder

    def reset(self) -> None:
        """Discard the buffered partial record."""
        self._buffer.clear()

    @property
    def pending_size(self) -> int:
        """Number of buffered bytes not yet part of a complete record."""
        return len(self._buffer)

    def empty(self) -> bool:
        return not self._buffer
