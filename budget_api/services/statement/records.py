"""Transient records produced while reading a statement."""

from dataclasses import dataclass, field, replace
from typing import Optional


@dataclass
class ImportMetadata:
    iban: Optional[str] = None
    expected_start: Optional[float] = None
    expected_end: Optional[float] = None

    def copy(self, **changes) -> "ImportMetadata":
        return replace(self, **changes)


@dataclass
class ParsedRow:
    row_number: int
    occurred_on: Optional[str]  # ISO "YYYY-MM-DD"
    description: str
    amount: Optional[float]
    value_date: Optional[str] = None
    raw_description: str = ""
    balance_after: Optional[float] = None
    iban: Optional[str] = None


@dataclass
class DetectedSchema:
    header_row_number: int
    first_data_row_number: int
    columns: dict[int, str]  # 1-based column number → canonical field
    metadata: ImportMetadata = field(default_factory=ImportMetadata)


@dataclass
class ParsedStatement:
    metadata: ImportMetadata
    rows: list[ParsedRow]
