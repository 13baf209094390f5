"""CSV Parser for pipe-delimited IGSN sample uploads."""

import csv
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union


logger = logging.getLogger(__name__)


class CSVParseError(Exception):
    """Raised when a CSV file cannot be parsed as a whole (malformed input)."""
    pass


@dataclass
class CsvRow:
    """One data row; row_number counts the header as line 1."""
    row_number: int
    data: Dict[str, str]

    def get(self, column: str, default: str = "") -> str:
        return self.data.get(column, default)

    def split(self, column: str) -> List[str]:
        """Values of a multi-valued column, split on ';' with empty tokens dropped."""
        return IgsnCsvParser.split_multi_value(self.data.get(column, ""))

    def split_aligned(self, column: str) -> List[str]:
        """Like split() but keeps empty tokens so positions line up with sibling columns."""
        raw = self.data.get(column, "")
        if not raw.strip():
            return []
        return [token.strip() for token in raw.split(IgsnCsvParser.MULTI_VALUE_SEPARATOR)]


@dataclass
class ParsedCsv:
    """Result of parsing: rows plus row-scoped problems that did not abort the file."""
    headers: List[str] = field(default_factory=list)
    rows: List[CsvRow] = field(default_factory=list)
    row_errors: List[Dict[str, object]] = field(default_factory=list)
    warnings: List[Dict[str, object]] = field(default_factory=list)


class IgsnCsvParser:
    """Parser for IGSN sample CSV files (pipe-delimited, header row, case-sensitive columns)."""

    DELIMITER = '|'
    MULTI_VALUE_SEPARATOR = ';'

    # Columns that must exist in the header; empty values are reported per row
    REQUIRED_COLUMNS = ['igsn', 'title', 'name']

    # Missing values only produce warnings
    RECOMMENDED_COLUMNS = ['latitude', 'longitude', 'collector', 'collection_start_date']

    @staticmethod
    def parse_file(filepath: str) -> ParsedCsv:
        """
        Parse an IGSN CSV file from disk.

        Args:
            filepath: Path to the CSV file

        Returns:
            ParsedCsv with rows, row errors and warnings

        Raises:
            CSVParseError: If file cannot be read or has invalid format
            FileNotFoundError: If file does not exist
        """
        file_path = Path(filepath)

        if not file_path.exists():
            raise FileNotFoundError(f"CSV file not found: {filepath}")

        if not file_path.is_file():
            raise CSVParseError(f"Path is not a file: {filepath}")

        logger.info(f"Parsing IGSN CSV file: {filepath}")

        try:
            content = file_path.read_bytes()
        except OSError as e:
            raise CSVParseError(f"Could not read CSV file: {e}") from e

        return IgsnCsvParser.parse(content)

    @staticmethod
    def parse(content: Union[str, bytes]) -> ParsedCsv:
        """
        Parse IGSN CSV content.

        Expected format:
        - Header row: igsn|title|name|collector|...
        - Data rows: 10.58052/IGSN.1234|Core 1|C-1|Foerste, Christoph|...

        Rows whose column count differs from the header are reported in
        row_errors and skipped; blank lines are ignored.

        Args:
            content: CSV text or UTF-8 encoded bytes

        Returns:
            ParsedCsv with rows, row errors and warnings

        Raises:
            CSVParseError: If the content is not UTF-8, has no header or lacks
                required columns
        """
        if isinstance(content, bytes):
            try:
                content = content.decode('utf-8-sig')
            except UnicodeDecodeError as e:
                raise CSVParseError(
                    "CSV file could not be read. Make sure the file is UTF-8 encoded."
                ) from e
        elif content.startswith('\ufeff'):
            content = content[1:]

        result = ParsedCsv()

        try:
            reader = csv.reader(io.StringIO(content), delimiter=IgsnCsvParser.DELIMITER)
            header = next(reader, None)

            if not header or not any(column.strip() for column in header):
                raise CSVParseError("CSV file must contain a header row and at least one data row.")

            headers = [column.strip() for column in header]
            missing = [column for column in IgsnCsvParser.REQUIRED_COLUMNS if column not in headers]
            if missing:
                raise CSVParseError(
                    f"Missing required columns: {', '.join(missing)}. Found: {headers}"
                )
            result.headers = headers

            for row_num, values in enumerate(reader, start=2):  # Line 1 is the header
                if not values or not any(value.strip() for value in values):
                    continue

                if len(values) != len(headers):
                    message = (
                        f"Row {row_num}: expected {len(headers)} columns, found {len(values)}"
                    )
                    logger.warning(message)
                    result.row_errors.append({
                        'row': row_num,
                        'identifier': values[0].strip() if values else None,
                        'message': message,
                    })
                    continue

                data = {column: value.strip() for column, value in zip(headers, values)}
                row = CsvRow(row_number=row_num, data=data)
                result.rows.append(row)
                result.warnings.extend(IgsnCsvParser._recommended_field_warnings(row))
                logger.debug(f"Parsed row {row_num}: {data.get('igsn', '')}")

        except csv.Error as e:
            raise CSVParseError(f"Error reading CSV file: {str(e)}") from e

        logger.info(
            f"Parsed {len(result.rows)} rows from IGSN CSV "
            f"({len(result.row_errors)} malformed, {len(result.warnings)} warnings)"
        )
        return result

    @staticmethod
    def split_multi_value(raw: Optional[str]) -> List[str]:
        """
        Split a multi-valued cell on ';'.

        Tokens are trimmed, empty tokens dropped and input order kept.
        """
        if not raw:
            return []
        return [token.strip() for token in raw.split(IgsnCsvParser.MULTI_VALUE_SEPARATOR) if token.strip()]

    @staticmethod
    def _recommended_field_warnings(row: CsvRow) -> List[Dict[str, object]]:
        warnings = []
        for column in IgsnCsvParser.RECOMMENDED_COLUMNS:
            if not row.get(column):
                warnings.append({
                    'row': row.row_number,
                    'field': column,
                    'message': f"Recommended field '{column}' is empty",
                })
        return warnings
