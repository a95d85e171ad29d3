"""
Report payload parsing

The reports API returns tab-separated text: one header row of field names
followed by one line per data row. Cells with no data are sent as "--".
"""
import math
from typing import Dict, Iterator, Optional

NO_DATA = "--"


def parse_tsv(text: Optional[str]) -> Iterator[Dict[str, str]]:
    """
    Lazily convert a TSV report body into header -> cell mappings.

    The "--" sentinel becomes "0". Lines shorter than the header leave the
    trailing columns out of the mapping; surplus cells are ignored.
    A body with no data lines yields nothing.
    """
    if not text:
        return

    # Rows end in "\n" only; free-text cells may hold other Unicode line breaks
    lines = (line.rstrip("\r") for line in text.lstrip("\ufeff").strip("\r\n").split("\n"))
    header = next(lines, None)
    if header is None:
        return
    columns = header.split("\t")

    for line in lines:
        if not line:
            continue
        row = {}
        for column, value in zip(columns, line.split("\t")):
            row[column] = "0" if value == NO_DATA else value
        yield row


def parse_number(value: Optional[str]) -> float:
    """Coerce a report cell to float; missing, "--" and garbage all count as 0"""
    if value is None or value == "" or value == NO_DATA:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0
