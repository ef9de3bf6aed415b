"""
Detection history loading and report generation.

Single Responsibility: History data loading and report text.
"""
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

from logger import get_logger

log = get_logger(__name__)


def load_history(history_file: Path) -> pd.DataFrame:
    """
    Load the detection history CSV.

    Args:
        history_file: Path to the history CSV

    Returns:
        DataFrame with a parsed, UTC ``timestamp`` column, or an empty
        DataFrame if the file doesn't exist
    """
    history_file = Path(history_file)
    if not history_file.exists():
        return pd.DataFrame()

    df = pd.read_csv(history_file)
    df.columns = [c.strip() for c in df.columns]
    if "timestamp" in df.columns and not df.empty:
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True, errors="coerce")
        df = df.dropna(subset=["timestamp"])
    return df


def filter_recent(df: pd.DataFrame, hours: int = 24, now: Optional[datetime] = None) -> pd.DataFrame:
    """
    Keep detections from the last ``hours`` hours.

    Args:
        df: History DataFrame from ``load_history``
        hours: Number of hours to look back
        now: Reference time (aware); defaults to the current UTC time
    """
    if df.empty or "timestamp" not in df.columns:
        return df
    now = now or datetime.now(timezone.utc)
    cutoff = pd.Timestamp(now - timedelta(hours=hours))
    return df[df["timestamp"] >= cutoff].copy()


def hourly_counts(df: pd.DataFrame) -> pd.Series:
    """Number of detections per clock hour, oldest first."""
    if df.empty or "timestamp" not in df.columns:
        return pd.Series(dtype="int64")
    return df.groupby(df["timestamp"].dt.floor("h")).size().sort_index()


def generate_report(df: pd.DataFrame, hours: int = 24, now: Optional[datetime] = None) -> str:
    """
    Generate a plain-text detection report.

    Args:
        df: History DataFrame from ``load_history``
        hours: Number of hours covered by the report
        now: Reference time (aware); defaults to the current UTC time

    Returns:
        Formatted report text
    """
    now = now or datetime.now(timezone.utc)
    recent = filter_recent(df, hours, now)

    lines = []
    lines.append(f"Pulse Detector Report - Last {hours} Hours")
    lines.append("=" * 60)
    lines.append(
        f"Period: {(now - timedelta(hours=hours)).strftime('%Y-%m-%d %H:%M:%S')} to "
        f"{now.strftime('%Y-%m-%d %H:%M:%S')} UTC"
    )
    lines.append(f"Total detections (all time): {len(df)}")
    lines.append(f"Detections in period: {len(recent)}")
    lines.append("")

    if recent.empty:
        lines.append("No detections recorded in this period.")
        return "\n".join(lines)

    if "distance" in recent.columns:
        lines.append(
            f"Distance: min {recent['distance'].min():.3f}, "
            f"mean {recent['distance'].mean():.3f}, "
            f"max {recent['distance'].max():.3f}"
        )
        lines.append("")

    lines.append("Detections per hour:")
    lines.append("-" * 60)
    for hour, count in hourly_counts(recent).items():
        lines.append(f"  {hour.strftime('%Y-%m-%d %H:00')}  {count:5d}")

    return "\n".join(lines)
