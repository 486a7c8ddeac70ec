"""
Upload reading and decoding.

Turns the byte stream of one uploaded file into text for the CSV reader.
"""

from typing import BinaryIO

from src.core.errors import ParseError

READ_CHUNK_BYTES = 1024 * 1024

# Equipment software exports either UTF-8 (often with BOM) or Windows Latin-1
ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")


class FileReader:
    """
    Reads an uploaded file's bytes and decodes them to text.
    """

    def __init__(self, max_bytes: int | None = None):
        """
        Initialize file reader.

        Args:
            max_bytes: Reject uploads larger than this (None = unlimited)
        """
        self.max_bytes = max_bytes

    def read(self, stream: BinaryIO | bytes) -> bytes:
        """
        Read all bytes of an upload.

        Args:
            stream: Binary file-like object, or bytes

        Returns:
            File content

        Raises:
            ParseError: If the upload exceeds ``max_bytes``
        """
        if isinstance(stream, (bytes, bytearray)):
            content = bytes(stream)
        else:
            chunks = []
            total = 0
            while True:
                chunk = stream.read(READ_CHUNK_BYTES)
                if not chunk:
                    break
                total += len(chunk)
                if self.max_bytes is not None and total > self.max_bytes:
                    raise ParseError(f"File exceeds maximum size of {self.max_bytes} bytes")
                chunks.append(chunk)
            content = b"".join(chunks)

        if self.max_bytes is not None and len(content) > self.max_bytes:
            raise ParseError(f"File exceeds maximum size of {self.max_bytes} bytes")
        return content

    def decode(self, content: bytes) -> str:
        """
        Decode file content trying UTF-8 first.

        Args:
            content: Raw bytes

        Returns:
            Decoded text with any UTF-8 BOM removed

        Raises:
            ParseError: If the content is empty or cannot be decoded
        """
        if not content.strip():
            raise ParseError("File is empty")

        for encoding in ENCODINGS:
            try:
                return content.decode(encoding)
            except UnicodeDecodeError:
                continue

        raise ParseError("File content could not be decoded as text")
