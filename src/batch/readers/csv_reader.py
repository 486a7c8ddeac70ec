"""
Streaming CSV reader producing RawRow batches.
"""

import csv
import io
from collections.abc import Iterator

from src.core.errors import ParseError
from src.core.models import RawRow


class CsvDocument:
    """
    Header row plus a lazy iterator over data rows of one file.

    Row numbers are 1-based physical line numbers, so the first data row
    directly under the header is row 2.
    """

    def __init__(self, text: str, separator: str, trim_fields: bool = True, skip_empty_lines: bool = True):
        self.separator = separator
        self.trim_fields = trim_fields
        self.skip_empty_lines = skip_empty_lines
        self._reader = csv.reader(
            io.StringIO(text, newline=""),
            delimiter=separator,
            quotechar='"',
            doublequote=True,
            strict=True,
        )
        self.headers = self._read_headers()

    def _clean(self, cells: list[str]) -> list[str]:
        if self.trim_fields:
            return [cell.strip() for cell in cells]
        return list(cells)

    def _next_record(self) -> list[str] | None:
        try:
            return next(self._reader)
        except StopIteration:
            return None
        except csv.Error as e:
            raise ParseError(f"Malformed CSV structure: {e}", row_number=self._reader.line_num) from e

    def _read_headers(self) -> list[str]:
        while True:
            record = self._next_record()
            if record is None:
                raise ParseError("File has no header row")
            headers = self._clean(record)
            if any(headers):
                return headers

    def rows(self) -> Iterator[RawRow]:
        """Yield data rows in file order."""
        while True:
            # Quoted fields may span lines; report the line the record starts on
            start_line = self._reader.line_num + 1
            record = self._next_record()
            if record is None:
                return
            cells = self._clean(record)
            if self.skip_empty_lines and not any(cells):
                continue
            yield RawRow(row_number=start_line, cells=cells, headers=self.headers)


class CSVReader:
    """
    Reads decoded CSV text in sequential fixed-size batches.

    Parsing is ordered: row numbers are needed for error reporting, so
    batches are produced one after another and never reordered.
    """

    def __init__(self, batch_size: int = 1000, trim_fields: bool = True, skip_empty_lines: bool = True):
        """
        Initialize CSV reader.

        Args:
            batch_size: Rows per batch
            trim_fields: Strip surrounding whitespace from every cell
            skip_empty_lines: Ignore lines where every cell is empty
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.trim_fields = trim_fields
        self.skip_empty_lines = skip_empty_lines

    def open(self, text: str, separator: str) -> CsvDocument:
        """
        Parse the header row and prepare row iteration.

        Args:
            text: Decoded file content
            separator: Field separator

        Returns:
            CsvDocument exposing ``headers`` and ``rows()``

        Raises:
            ParseError: If the file has no header row
        """
        return CsvDocument(
            text,
            separator,
            trim_fields=self.trim_fields,
            skip_empty_lines=self.skip_empty_lines,
        )

    def read_batches(self, document: CsvDocument) -> Iterator[list[RawRow]]:
        """
        Group the document's rows into batches of ``batch_size``.

        Args:
            document: Document returned by ``open``

        Yields:
            Lists of RawRow, the last one possibly shorter

        Raises:
            ParseError: On malformed structure (e.g. unterminated quote)
        """
        batch: list[RawRow] = []
        for row in document.rows():
            batch.append(row)
            if len(batch) >= self.batch_size:
                yield batch
                batch = []
        if batch:
            yield batch
