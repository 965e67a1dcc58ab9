from __future__ import annotations

import io
import math
import re
import unicodedata
from datetime import datetime

import pandas as pd


# Spreadsheet header (normalized) -> ProductionEntry field
ENTRY_COLUMN_ALIASES: dict[str, str] = {
    "id": "id",
    "date": "date",
    "category": "category",
    "department": "category",
    "process": "process",
    "product": "product_name",
    "product_name": "product_name",
    "productname": "product_name",
    "plan": "plan_quantity",
    "plan_quantity": "plan_quantity",
    "planquantity": "plan_quantity",
    "actual": "actual_quantity",
    "actual_quantity": "actual_quantity",
    "actualquantity": "actual_quantity",
    "unit": "unit",
    "batch": "batch_no",
    "batch_no": "batch_no",
    "batchno": "batch_no",
    "manpower": "manpower",
}

DAILY_REPORT_COLUMNS = [
    "Date", "Status", "Category", "Process", "Product", "Plan", "Actual",
    "Unit", "Efficiency %", "Batch No", "Manpower",
]
MONTHLY_REPORT_COLUMNS = ["Month", "Total Plan", "Total Actual", "Overall Efficiency %"]


def read_excel_bytes(content: bytes) -> pd.DataFrame:
    """Read .xlsx bytes into a DataFrame (first sheet)."""
    bio = io.BytesIO(content)
    df = pd.read_excel(bio)
    df.columns = [str(c).strip() for c in df.columns]
    return df


def normalize_col_name(name: str) -> str:
    """Normalize a column header to an ASCII snake_case token."""
    s = str(name or "").strip()
    # camelCase headers written by the sync endpoint (productName -> product_name)
    s = re.sub(r"([a-z])([A-Z])", r"\1_\2", s).lower()
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = s.replace("\u00a0", " ")
    s = re.sub(r"[^a-z0-9 _]+", " ", s)
    s = re.sub(r"[\s_]+", "_", s).strip("_")
    return s


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [normalize_col_name(c) for c in df.columns]
    return df


_DIGITS_RE = re.compile(r"^\d+$")
_THOUSANDS_COMMA_RE = re.compile(r"^[+-]?\d{1,3}(,\d{3})+$")


def parse_int_strict(value, *, field: str) -> int:
    """Parse an integer from a spreadsheet cell.

    Accepts ints, floats like 5.0 and digit-only strings. Raises ValueError otherwise.
    """
    if value is None:
        raise ValueError(f"{field} is empty")

    if isinstance(value, bool):
        raise ValueError(f"{field} invalid: {value!r}")

    if isinstance(value, int):
        return int(value)

    if isinstance(value, float):
        if pd.isna(value):
            raise ValueError(f"{field} is empty")
        if float(value).is_integer():
            return int(value)
        raise ValueError(f"{field} invalid (not an integer): {value!r}")

    s = str(value).strip()
    if not s:
        raise ValueError(f"{field} is empty")
    if _DIGITS_RE.match(s):
        return int(s)

    raise ValueError(f"{field} invalid: {value!r}")


def coerce_date(value, *, field: str = "date") -> str:
    """Coerce common Excel/pandas date representations to ISO YYYY-MM-DD."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        raise ValueError(f"{field} is empty")

    if isinstance(value, datetime):
        return value.date().isoformat()

    # pandas Timestamp
    if hasattr(value, "to_pydatetime"):
        return value.to_pydatetime().date().isoformat()

    # datetime.date
    if hasattr(value, "isoformat") and hasattr(value, "year"):
        return value.isoformat()

    s = str(value).strip()
    try:
        return datetime.fromisoformat(s).date().isoformat()
    except ValueError:
        pass

    for fmt in ("%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(s, fmt).date().isoformat()
        except ValueError:
            continue

    raise ValueError(f"{field} invalid: {value!r}")


def coerce_float(value) -> float | None:
    """Coerce a numeric cell to float; None when empty/NaN or unparsable.

    Separators in text cells: the last of ',' / '.' is the decimal mark
    ("1.234,5", "1,234.5"). A lone comma is a thousands separator when it
    groups digits by three ("1,000", "12,345,678"), otherwise a decimal mark ("12,5").
    """
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None

    if isinstance(value, (int, float)):
        return float(value)

    s = str(value).strip()
    if not s or s.lower() == "nan":
        return None

    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif _THOUSANDS_COMMA_RE.match(s):
        s = s.replace(",", "")
    elif "," in s:
        s = s.replace(",", ".")

    try:
        return float(s)
    except ValueError:
        return None


def parse_float_strict(value, *, field: str) -> float | None:
    """Parse a quantity cell. None when empty; ValueError when unparsable or not finite."""
    if isinstance(value, bool):
        raise ValueError(f"{field} invalid: {value!r}")
    parsed = coerce_float(value)
    if parsed is None:
        if value is None or (isinstance(value, float) and pd.isna(value)):
            return None
        s = str(value).strip()
        if not s or s.lower() == "nan":
            return None
        raise ValueError(f"{field} invalid: {value!r}")
    if not math.isfinite(parsed):
        raise ValueError(f"{field} must be a finite number: {value!r}")
    return parsed


def entries_from_excel_bytes(content: bytes) -> list[dict]:
    """Read an entries sheet into raw row dicts keyed by entry field names.

    Unknown columns are dropped; empty cells become None.
    """
    df = normalize_columns(read_excel_bytes(content))
    rename = {c: ENTRY_COLUMN_ALIASES[c] for c in df.columns if c in ENTRY_COLUMN_ALIASES}
    df = df[list(rename)].rename(columns=rename)
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def entries_to_excel_bytes(rows: list[dict], *, view: str = "daily") -> bytes:
    """Write the production log (daily rows or monthly totals) to .xlsx bytes."""
    if view == "daily":
        columns = DAILY_REPORT_COLUMNS
        sheet = "Daily"
    elif view == "monthly":
        columns = MONTHLY_REPORT_COLUMNS
        sheet = "Monthly"
    else:
        raise ValueError(f"Unknown report view: {view!r}")

    df = pd.DataFrame(rows, columns=columns)
    bio = io.BytesIO()
    with pd.ExcelWriter(bio, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=sheet)
    return bio.getvalue()
