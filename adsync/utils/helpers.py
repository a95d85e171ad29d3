"""
Helper utilities
"""
from datetime import datetime, timezone
from typing import List


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (matches DateTime columns)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers"""
    try:
        return numerator / denominator if denominator != 0 else default
    except (TypeError, ZeroDivisionError):
        return default


def click_through_rate(clicks: float, impressions: float) -> float:
    """CTR as a percentage (0-100); 0 when there were no impressions"""
    if impressions <= 0:
        return 0.0
    return safe_divide(clicks, impressions) * 100


def chunk_list(lst: List, chunk_size: int) -> List[List]:
    """Split list into chunks"""
    return [lst[i:i + chunk_size] for i in range(0, len(lst), chunk_size)]
