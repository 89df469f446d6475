"""
Cell value normalization for bank statement spreadsheets.

Pure functions only: cells come in as whatever openpyxl (or the stub
fixture) hands us (str, int, float, datetime or None) and leave as
canonical Python values.
"""

import math
import re
import unicodedata
from datetime import date, datetime, timedelta
from typing import Optional

# Whole cleaned cell, optionally labelled "IBAN"; 15 to 34 characters
IBAN_RE = re.compile(r"(?:IBAN)?([A-Z]{2}\d{2}[A-Z0-9]{11,30})")

# Serial day counts in spreadsheets are relative to this anchor
SERIAL_EPOCH = date(1899, 12, 30)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_DOTTED_RE = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})$")
_SLASHED_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")


def to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    # openpyxl CellRichText and similar
    text = getattr(value, "text", None)
    if isinstance(text, str):
        return text
    return str(value)


def normalize_label(value) -> str:
    """Lowercase, strip accents and collapse punctuation: "Solde après opération" → "solde apres operation"."""
    text = to_text(value).strip()
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM_RE.sub(" ", stripped.lower()).strip()


# Header cells and descriptions go through the same normalization
normalize_header = normalize_label


def normalize_iban(value) -> Optional[str]:
    """"IBAN: ch93 0076 2011 6238 5295 7" → "CH9300762011623852957"; None unless the cell is an IBAN."""
    if value is None:
        return None
    text = re.sub(r"[^A-Za-z0-9]", "", to_text(value)).upper()
    if not text:
        return None
    match = IBAN_RE.fullmatch(text)
    return match.group(1) if match else None


def parse_number(value) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None

    text = to_text(value)
    text = re.sub(r"\s+", "", text).replace("'", "").replace("\u00a0", "").replace(",", ".", 1)
    # float() would accept "1_000"
    if not text or "_" in text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_date(value) -> Optional[date]:
    """Best-effort date parsing. Returns None instead of raising."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return SERIAL_EPOCH + timedelta(days=math.floor(value))
        except OverflowError:
            return None

    text = to_text(value).strip()
    if not text:
        return None

    try:
        match = _ISO_RE.match(text)
        if match:
            y, m, d = match.groups()
            return date(int(y), int(m), int(d))
        match = _DOTTED_RE.match(text)
        if match:
            d, m, y = match.groups()
            return date(int(y), int(m), int(d))
        match = _SLASHED_RE.match(text)
        if match:
            m, d, y = match.groups()
            return date(int(y), int(m), int(d))
    except ValueError:
        # 2024-02-31 and friends
        return None
    return None


def format_date(value) -> Optional[str]:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None
