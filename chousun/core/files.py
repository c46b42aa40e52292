"""
Side-channel file payloads for read requests.

WhereInFile ships local files as external-data tables so huge IN-lists never
appear in the SQL text; WriteToFile sends the result stream into a local file.
"""

import os
from typing import Dict, List, Tuple

from chousun.exceptions import QueryError


class WhereInFile:
    """
    External-data tables attached to a select.

    Usage:
        where_in = WhereInFile()
        where_in.attach_file("/tmp/ids.csv", "ids", {"id": "UInt64"})
        ch.transport.select("SELECT * FROM events WHERE id IN ids", where_in_file=where_in)
    """

    FORMAT_CSV = "CSV"
    FORMAT_TSV = "TabSeparated"
    FORMAT_JSON_EACH_ROW = "JSONEachRow"

    def __init__(self):
        self._files: List[Tuple[str, str, str, str]] = []

    def attach_file(self, file_name: str, table_name: str, structure, format: str = FORMAT_CSV) -> "WhereInFile":
        """
        Attach a local file as external table table_name.

        Args:
            file_name: Path of the data file
            table_name: Name the query uses for the table
            structure: "id UInt64, name String" or {"id": "UInt64", "name": "String"}
            format: Data format of the file
        """
        if not os.path.isfile(file_name):
            raise QueryError(f"External data file not found: {file_name}")

        if isinstance(structure, dict):
            structure = ", ".join(f"{name} {kind}" for name, kind in structure.items())

        self._files.append((file_name, table_name, structure, format))
        return self

    def size(self) -> int:
        return len(self._files)

    def fetch_files(self) -> Dict[str, str]:
        """Table name -> file path."""
        return {table: file_name for file_name, table, _, _ in self._files}

    def fetch_url_params(self) -> Dict[str, str]:
        """URL parameters declaring each table's structure and format."""
        params: Dict[str, str] = {}
        for _, table, structure, format in self._files:
            params[f"{table}_structure"] = structure
            params[f"{table}_format"] = format
        return params


class WriteToFile:
    """
    Local sink for a select's result stream.

    Args:
        file_name: Destination path; its directory must exist
        overwrite: Replace an existing file (otherwise QueryError)
        format: Output format written to the file

    Raises:
        QueryError: Unsupported format, existing file without overwrite, or
            missing/unwritable directory
    """

    FORMAT_TSV = "TabSeparated"
    FORMAT_TSV_WITH_NAMES = "TabSeparatedWithNames"
    FORMAT_CSV = "CSV"
    FORMAT_CSV_WITH_NAMES = "CSVWithNames"
    FORMAT_JSON_EACH_ROW = "JSONEachRow"

    SUPPORTED_FORMATS = (
        FORMAT_TSV,
        FORMAT_TSV_WITH_NAMES,
        FORMAT_CSV,
        FORMAT_CSV_WITH_NAMES,
        FORMAT_JSON_EACH_ROW,
    )

    def __init__(self, file_name: str, overwrite: bool = True, format: str = FORMAT_CSV):
        if format not in self.SUPPORTED_FORMATS:
            raise QueryError(
                f"Unsupported output format: {format}. Available: {', '.join(self.SUPPORTED_FORMATS)}"
            )

        if os.path.exists(file_name) and not overwrite:
            raise QueryError(f"File already exists: {file_name}")

        directory = os.path.dirname(os.path.abspath(file_name))
        if not os.path.isdir(directory):
            raise QueryError(f"Directory does not exist: {directory}")
        if not os.access(directory, os.W_OK):
            raise QueryError(f"Directory is not writable: {directory}")

        self._file_name = file_name
        self._format = format
        self._gzip = False

    def set_gzip(self, flag: bool = True) -> "WriteToFile":
        self._gzip = flag
        return self

    @property
    def gzip(self) -> bool:
        return self._gzip

    def fetch_file(self) -> str:
        return self._file_name

    def fetch_format(self) -> str:
        return self._format
