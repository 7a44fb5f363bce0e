# reports.py
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd
import pytz

from models import REPORT_COLUMNS, STATUS_PENDING, ValidationError

DEFAULT_TZ = "Africa/Casablanca"
DEFAULT_WINDOW_DAYS = 30
PENDING_PREVIEW = 5

CSV_HEADERS = {
    "local_date": "Date",
    "driver_name": "Chauffeur",
    "plate_number": "Plaque",
    "odometer": "Odomètre (km)",
    "liters": "Litres",
    "total_cost": "Coût (MAD)",
    "status": "Statut",
}


def default_window(today: Optional[date] = None) -> Tuple[date, date]:
    today = today or date.today()
    return today - timedelta(days=DEFAULT_WINDOW_DAYS), today


def parse_window(start: Optional[str], end: Optional[str],
                 today: Optional[date] = None) -> Tuple[date, date]:
    """Parse YYYY-MM-DD bounds; missing bounds fall back to the last 30 days."""
    d_start, d_end = default_window(today)
    try:
        if start:
            d_start = date.fromisoformat(start.strip())
        if end:
            d_end = date.fromisoformat(end.strip())
    except ValueError:
        raise ValidationError("Dates must use the YYYY-MM-DD format.")
    return d_start, d_end


def local_date(value: Any, tz_name: str = DEFAULT_TZ, fmt: str = "%d/%m/%Y") -> str:
    """
    Render a stored timestamp as a local calendar date.
    Naive values are treated as UTC; unparseable values are shown as-is.
    """
    if value is None or str(value).strip() == "":
        return "—"
    ts = pd.to_datetime(str(value), utc=True, errors="coerce")
    if pd.isna(ts):
        return str(value)
    return ts.tz_convert(pytz.timezone(tz_name)).strftime(fmt)


def _frame(records: Iterable[Dict[str, Any]], tz_name: str) -> pd.DataFrame:
    df = pd.DataFrame(list(records))
    for c in REPORT_COLUMNS + ["id"]:
        if c not in df.columns:
            df[c] = pd.Series(dtype="object")
    df["_ts"] = pd.to_datetime(df["date"], utc=True, errors="coerce").dt.tz_convert(
        pytz.timezone(tz_name)
    )
    return df


def _in_window(df: pd.DataFrame, start: date, end: date, tz_name: str) -> pd.DataFrame:
    tz = pytz.timezone(tz_name)
    lo = pd.Timestamp(tz.localize(datetime.combine(start, time.min)))
    # whole end day included
    hi = pd.Timestamp(tz.localize(datetime.combine(end + timedelta(days=1), time.min)))
    return df[(df["_ts"] >= lo) & (df["_ts"] < hi)]


def _sum(df: pd.DataFrame, column: str) -> float:
    if df.empty:
        return 0.0
    return round(float(pd.to_numeric(df[column], errors="coerce").fillna(0).sum()), 2)


def build_report(records: Iterable[Dict[str, Any]], start: date, end: date,
                 plate: Optional[str] = None, tz_name: str = DEFAULT_TZ) -> Dict[str, Any]:
    """
    Entries dated within [start, end] (local calendar days, inclusive),
    optionally for one plate, newest first, with cost and liter totals.
    """
    df = _in_window(_frame(records, tz_name), start, end, tz_name)
    if plate:
        df = df[df["plate_number"] == plate]
    df = df.sort_values(by=["_ts", "id"], ascending=[False, False])

    rows = []
    for r in df.drop(columns=["_ts"]).to_dict(orient="records"):
        row = {c: r.get(c) for c in ["id"] + REPORT_COLUMNS}
        row["local_date"] = local_date(row["date"], tz_name)
        rows.append(row)

    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "plate": plate or None,
        "rows": rows,
        "count": len(rows),
        "total_cost": _sum(df, "total_cost"),
        "total_liters": _sum(df, "liters"),
        "is_empty": not rows,
    }


def report_csv(report: Dict[str, Any]) -> bytes:
    """Tabular export of a report (UTF-8 with BOM for spreadsheet tools)."""
    out = pd.DataFrame(report["rows"], columns=list(CSV_HEADERS.keys()))
    out["liters"] = out["liters"].map(lambda v: f"{float(v):.2f}")
    out["total_cost"] = out["total_cost"].map(lambda v: f"{float(v):.2f}")
    out = out.rename(columns=CSV_HEADERS)
    return out.to_csv(index=False).encode("utf-8-sig")


def daily_costs(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Cost per local calendar day, oldest day first."""
    if df.empty:
        return []
    costs = pd.to_numeric(df["total_cost"], errors="coerce").fillna(0)
    grouped = costs.groupby(df["_ts"].dt.strftime("%Y-%m-%d")).sum().sort_index()
    return [{"day": day, "total_cost": round(float(v), 2)} for day, v in grouped.items()]


def dashboard_summary(records: Iterable[Dict[str, Any]], start: date, end: date,
                      tz_name: str = DEFAULT_TZ) -> Dict[str, Any]:
    """
    Administrator overview for a site.

    `records` are entries carrying `distance` (see fuel_store.with_distance).
    Totals cover the window; the pending preview covers the whole site.
    """
    all_df = _frame(records, tz_name)
    df = _in_window(all_df, start, end, tz_name)

    distance = 0
    if not df.empty and "distance" in df.columns:
        distance = int(pd.to_numeric(df["distance"], errors="coerce").fillna(0).sum())

    pending = all_df[all_df["status"] == STATUS_PENDING].sort_values(
        by=["_ts", "id"], ascending=[False, False]
    )
    pending_rows = pending.drop(columns=["_ts"]).head(PENDING_PREVIEW).to_dict(orient="records")

    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "total_cost": _sum(df, "total_cost"),
        "total_liters": _sum(df, "liters"),
        "total_distance": distance,
        "pending_count": int((df["status"] == STATUS_PENDING).sum()),
        "latest_pending": [_clean_record(r) for r in pending_rows],
        "daily_costs": daily_costs(df),
    }


def _clean_record(r: Dict[str, Any]) -> Dict[str, Any]:
    # pandas turns missing values into NaN; the API wants None
    return {k: (None if isinstance(v, float) and v != v else v) for k, v in r.items()}
