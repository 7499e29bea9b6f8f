"""CSV exports built with pandas."""
from __future__ import annotations

import pandas as pd

PAYMENT_COLUMNS = [
    "payment_id",
    "payment_date",
    "student",
    "email",
    "class",
    "target_month",
    "amount",
    "currency",
    "method",
    "status",
    "verified",
    "reference",
]


def payments_frame(rows: list[dict]) -> pd.DataFrame:
    frame = pd.DataFrame(rows, columns=PAYMENT_COLUMNS)
    if not frame.empty:
        frame["payment_date"] = pd.to_datetime(frame["payment_date"]).dt.strftime("%Y-%m-%d %H:%M")
        frame["amount"] = frame["amount"].astype(float).round(2)
        frame = frame.sort_values("payment_date", ascending=False)
    return frame


def monthly_revenue(frame: pd.DataFrame) -> dict[str, float]:
    """Completed revenue per billing month."""
    if frame.empty:
        return {}
    completed = frame[frame["status"] == "completed"]
    grouped = completed.groupby("target_month")["amount"].sum().round(2)
    return {str(k): float(v) for k, v in grouped.items()}


def to_csv_bytes(frame: pd.DataFrame) -> bytes:
    return frame.to_csv(index=False).encode("utf-8")
