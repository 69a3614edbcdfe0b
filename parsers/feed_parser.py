"""
Product feed parser.

Turns the merchant's CSV/XLSX feed into validated FeedRecord values.
Rows missing SKU, name or price (or with bad values) are reported as
row errors and kept out of matching; they never abort the whole feed.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from io import BytesIO
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union
import math
import re

import pandas as pd
import structlog
from pydantic import ValidationError as PydanticValidationError

from exceptions import FeedParseError, FeedRowValidationError
from models.catalog import FeedRecord, FeedRowError
from utils.text_utils import normalize_text

logger = structlog.get_logger(__name__)

# Header spellings accepted for each feed field (after normalize_text, spaces → _)
COLUMN_ALIASES = {
    "sku": "sku",
    "codigo": "sku",
    "clave": "sku",
    "name": "name",
    "nombre": "name",
    "producto": "name",
    "price": "price",
    "precio": "price",
    "precio_menudeo": "price",
    "wholesale_price": "wholesale_price",
    "price_wholesale": "wholesale_price",
    "precio_mayoreo": "wholesale_price",
    "description": "description",
    "descripcion": "description",
    "category": "category",
    "categoria": "category",
    "tags": "tags",
    "etiquetas": "tags",
}

REQUIRED_FIELDS = ("sku", "name", "price")

# "1,250" and "1,250,000" group thousands; a single dot is always decimal
THOUSANDS_PATTERNS = {
    ",": re.compile(r"^-?\d{1,3}(,\d{3})+$"),
    ".": re.compile(r"^-?\d{1,3}(\.\d{3}){2,}$"),
}

FileInput = Union[str, Path, BytesIO, bytes]


@dataclass
class FeedParseResult:
    """Result of parsing a feed."""
    records: list[FeedRecord] = field(default_factory=list)
    errors: list[FeedRowError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True if no row was rejected."""
        return len(self.errors) == 0

    @property
    def has_data(self) -> bool:
        """True if at least one row is usable."""
        return len(self.records) > 0

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "records": [r.model_dump() for r in self.records],
            "errors": [e.model_dump() for e in self.errors],
        }


# ===================
# VALUE HELPERS
# ===================

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _text(value: Any) -> Optional[str]:
    if _is_blank(value):
        return None
    return str(value).strip()


def _normalize_amount(text: str) -> str:
    """
    Resolve thousands and decimal marks in a price string.

    With both "," and "." present the last one is the decimal mark
    ("1,250.50", "1.250,50"). A lone separator kind groups thousands
    when it matches THOUSANDS_PATTERNS ("$1,250", "1.250.000"); otherwise a
    single separator is the decimal mark ("12,5", "50.50").
    """
    if "," in text and "." in text:
        decimal_mark = "," if text.rfind(",") > text.rfind(".") else "."
        thousands = "." if decimal_mark == "," else ","
        return text.replace(thousands, "").replace(decimal_mark, ".")

    for mark in (",", "."):
        if mark in text:
            if THOUSANDS_PATTERNS[mark].match(text):
                return text.replace(mark, "")
            return text.replace(mark, ".") if text.count(mark) == 1 else text
    return text


def parse_price_cents(value: Any) -> Optional[int]:
    """
    Convert a price cell to integer cents (half-up).

    Accepts numbers and strings like "100", "$1,250", "$1,250.50",
    "1.250,50", "12,5". Returns None when the value is not a number.
    """
    if _is_blank(value):
        return None

    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        amount = Decimal(str(value))
    else:
        text = str(value).strip().replace("$", "").replace(" ", "")
        try:
            amount = Decimal(_normalize_amount(text))
        except InvalidOperation:
            return None

    if not amount.is_finite():
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_tags(value: Any) -> tuple[str, ...]:
    """Split a comma separated tag cell, dropping blanks."""
    text = _text(value)
    if not text:
        return ()
    return tuple(tag.strip() for tag in text.split(",") if tag.strip())


def canonical_row(row: Mapping[str, Any]) -> dict[str, Any]:
    """Map header spellings to canonical field names; unknown columns are dropped."""
    canonical: dict[str, Any] = {}
    for key, value in row.items():
        header = normalize_text(str(key)).replace(" ", "_")
        target = COLUMN_ALIASES.get(header)
        if target and target not in canonical:
            canonical[target] = value
    return canonical


# ===================
# ROW VALIDATION
# ===================

def source_cells(row: Mapping[str, Any]) -> tuple[tuple[str, str], ...]:
    """Row cells as uploaded, blanks as empty strings."""
    return tuple((str(key), _text(value) or "") for key, value in row.items())


def parse_row(
    row: Mapping[str, Any],
    row_number: int,
    source: Optional[Mapping[str, Any]] = None,
) -> FeedRecord:
    """
    Validate a single canonical row.

    source is the row as uploaded (original headers); it is kept on the
    record for the failure report.

    Raises:
        FeedRowValidationError: On the first problem found
    """
    sku = _text(row.get("sku"))

    for required in REQUIRED_FIELDS:
        if _is_blank(row.get(required)):
            raise FeedRowValidationError(row_number, required, "is required", sku=sku)

    price = parse_price_cents(row.get("price"))
    if price is None or price <= 0:
        raise FeedRowValidationError(row_number, "price", "must be a positive number", sku=sku)

    wholesale = None
    if not _is_blank(row.get("wholesale_price")):
        wholesale = parse_price_cents(row.get("wholesale_price"))
        if wholesale is None or wholesale <= 0:
            raise FeedRowValidationError(
                row_number, "wholesale_price", "must be a positive number", sku=sku
            )

    try:
        return FeedRecord(
            sku=sku,
            name=_text(row.get("name")),
            price_cents=price,
            wholesale_price_cents=wholesale,
            description=_text(row.get("description")),
            category=_text(row.get("category")),
            tags=parse_tags(row.get("tags")),
            row_number=row_number,
            source_row=source_cells(source if source is not None else row),
        )
    except PydanticValidationError as e:
        first = e.errors()[0]
        field_name = str(first["loc"][0]) if first.get("loc") else "row"
        raise FeedRowValidationError(row_number, field_name, first["msg"], sku=sku) from e


def validate_feed_rows(
    rows: Iterable[Mapping[str, Any]],
    start_row: int = 1,
    max_rows: Optional[int] = None,
) -> FeedParseResult:
    """
    Validate raw feed rows into FeedRecords.

    SKUs must be unique within the feed (case-insensitive); the first row
    wins and later duplicates are rejected.

    Args:
        rows: Row mappings keyed by header (any alias in COLUMN_ALIASES)
        start_row: Row number reported for the first row (2 for files with a header)
        max_rows: Reject the whole feed above this many rows

    Returns:
        FeedParseResult with valid records and per-row errors

    Raises:
        FeedParseError: If the feed has more than max_rows rows
    """
    rows = list(rows)
    if max_rows is not None and len(rows) > max_rows:
        raise FeedParseError(
            message=f"Feed has {len(rows)} rows; at most {max_rows} are allowed",
            details={"rows": len(rows), "max_rows": max_rows}
        )

    result = FeedParseResult()
    seen: dict[str, int] = {}

    for offset, raw in enumerate(rows):
        row_number = start_row + offset
        try:
            record = parse_row(canonical_row(raw), row_number, source=raw)
            key = record.sku.casefold()
            if key in seen:
                raise FeedRowValidationError(
                    row_number, "sku", f"duplicates row {seen[key]}", sku=record.sku
                )
        except FeedRowValidationError as e:
            logger.warning(
                "feed_row_rejected",
                row=e.row,
                field=e.field,
                error=e.error,
                sku=e.sku
            )
            result.errors.append(FeedRowError(row=e.row, field=e.field, error=e.error, sku=e.sku))
            continue

        seen[key] = row_number
        result.records.append(record)

    logger.info(
        "feed_validated",
        rows=len(rows),
        valid=len(result.records),
        rejected=len(result.errors)
    )
    return result


# ===================
# FILE ADAPTER
# ===================

def _read_frame(file: FileInput, filename: str) -> pd.DataFrame:
    if isinstance(file, bytes):
        file = BytesIO(file)

    lower = filename.lower()
    if lower.endswith(".xls"):
        raise FeedParseError(
            message="Legacy .xls files are not supported; save the feed as .xlsx or .csv",
            details={"filename": filename}
        )

    if lower.endswith(".xlsx"):
        return pd.read_excel(file, engine="openpyxl", dtype=str)

    if lower.endswith(".csv"):
        try:
            return pd.read_csv(file, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        except UnicodeDecodeError:
            # Excel on Windows exports CSV as latin-1
            if isinstance(file, BytesIO):
                file.seek(0)
            return pd.read_csv(file, dtype=str, keep_default_na=False, encoding="latin-1")

    raise FeedParseError(
        message="Feed must be a CSV or Excel file (.csv, .xlsx)",
        details={"filename": filename}
    )


def read_feed_file(
    file: FileInput,
    filename: str,
    column_mapping: Optional[Mapping[str, str]] = None,
    max_rows: Optional[int] = None,
) -> FeedParseResult:
    """
    Read and validate a CSV/XLSX product feed.

    Args:
        file: File path, bytes or file-like object
        filename: Original filename (selects the reader)
        column_mapping: Optional {source column: feed field} overrides,
                        e.g. {"Precio Público": "price"}
        max_rows: Reject feeds above this many rows

    Returns:
        FeedParseResult

    Raises:
        FeedParseError: If the file cannot be read or is the wrong type
    """
    logger.info("parsing_feed", filename=filename, file_type=type(file).__name__)

    try:
        frame = _read_frame(file, filename)
    except FeedParseError:
        raise
    except Exception as e:
        logger.error("feed_read_failed", filename=filename, error=str(e))
        raise FeedParseError(
            message="Failed to read feed file",
            details={"filename": filename, "original_error": str(e)}
        )

    if column_mapping:
        frame = frame.rename(columns=dict(column_mapping))

    frame = frame.dropna(how="all")
    rows = frame.to_dict(orient="records")

    # Header is row 1 in the merchant's spreadsheet
    return validate_feed_rows(rows, start_row=2, max_rows=max_rows)
