"""Data conversion utilities for the K8s Memory Analyzer.

This module provides conversion functions between different data formats:
- ISO8601 / RFC3339 dates to unix timestamps
- Prometheus sample values to integers
- Memory unit conversions (bytes to MB)
"""
from datetime import datetime
from datetime import timezone
from typing import Union

BYTES_PER_MB = 1024 * 1024


def convert_dt_to_epoch(ts: str) -> int:
    """Convert an ISO8601 datetime string to seconds since epoch.
    Assume format '2020-04-19T19:00:00Z'; naive datetimes are taken as UTC."""
    parsed = datetime.fromisoformat(ts.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def parse_sample_timestamp(ts: Union[int, float, str]) -> int:
    """Prometheus reports sample timestamps as (possibly fractional) seconds."""
    return int(float(ts))


def parse_sample_bytes(value: Union[int, float, str]) -> int:
    """Prometheus reports sample values as strings, e.g. '1.2345e+08'."""
    return int(float(value))


def bytes_to_mb_floor(num_bytes: int) -> int:
    return num_bytes // BYTES_PER_MB


def bytes_to_mb_ceil(num_bytes: int) -> int:
    return -(-num_bytes // BYTES_PER_MB)
