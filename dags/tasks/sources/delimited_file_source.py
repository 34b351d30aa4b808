"""Delimited text file source implementation."""

import csv
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List

try:
    from .base_source import BaseSource
except ImportError:
    from base_source import BaseSource


class DelimitedFileSource(BaseSource):
    """
    Stream rows from a delimited text file (CSV, TSV, pipe-separated...).

    Fields are passed through as strings; empty fields stay empty strings
    (the upsert destination stores them as NULL).

    Configuration:
        path (str): Path to the file (required)
        delimiter (str): Field delimiter (default: ',')
        has_header (bool): Skip the first line as a header (default: True)
        expected_header (list): If set, the header must match it exactly
        encoding (str): File encoding (default: 'utf-8')
        queue_size (int): If > 0, read the file on a producer thread feeding
                          a bounded queue of this size (default: 0)

    Example config:
        {
            "type": "delimited_file",
            "path": "/data/users.csv",
            "delimiter": ",",
            "has_header": true,
            "queue_size": 10000
        }
    """

    def __init__(self, config: Dict[str, Any]):
        """Initialize delimited file source with configuration."""
        super().__init__(config)
        self.validate_config()

        self.log = logging.getLogger(self.__class__.__name__)

        # Get configuration with defaults
        self.path = Path(config["path"])
        self.delimiter = config.get("delimiter", ",")
        self.has_header = config.get("has_header", True)
        self.expected_header = config.get("expected_header")
        self.encoding = config.get("encoding", "utf-8")

    def validate_config(self) -> None:
        """
        Validate required configuration parameters.

        Raises:
            ValueError: If required parameters are missing or invalid
        """
        if not self.config.get("path"):
            raise ValueError("Missing required configuration field: path")

        delimiter = self.config.get("delimiter", ",")
        if not isinstance(delimiter, str) or len(delimiter) != 1:
            raise ValueError(f"Invalid delimiter '{delimiter}'. Must be a single character")

        queue_size = self.config.get("queue_size", 0)
        if not isinstance(queue_size, int) or queue_size < 0:
            raise ValueError(f"Invalid queue_size '{queue_size}'. Must be a non-negative integer")

    def iter_rows(self) -> Iterator[List[str]]:
        """
        Stream rows from the file.

        Returns:
            Iterator[List[str]]: One list of string fields per data line

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If expected_header is set and the header differs
        """
        self.log.info(f"Reading rows from {self.path}")
        with open(self.path, "r", encoding=self.encoding, newline="") as f:
            reader = csv.reader(f, delimiter=self.delimiter)

            if self.has_header:
                header = next(reader, None)
                if self.expected_header is not None and header != list(self.expected_header):
                    raise ValueError(
                        f"Header of {self.path} does not match expected columns: "
                        f"{header} != {list(self.expected_header)}"
                    )

            for row in reader:
                # Skip blank lines
                if not row:
                    continue
                yield row
