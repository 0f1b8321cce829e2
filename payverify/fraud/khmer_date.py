"""Transaction timestamp parsing with Khmer numeral and month support.

Parse order:
1. ISO 8601 and a fixed list of English layouts
2. The same after converting Khmer digits (U+17E0-U+17E9) to ASCII
3. Khmer month name plus surrounding numbers ("០៦ មករា ២០២៦ ១៣:៣៥")
4. DD/MM/YYYY or DD-MM-YYYY, swapping day and month when only that is valid
"""

import logging
import re
from datetime import datetime

logger = logging.getLogger(__name__)

KHMER_DIGITS = str.maketrans("០១២៣៤៥៦៧៨៩", "0123456789")

# Full month names, checked before the shorter spellings below
KHMER_MONTHS: dict[str, int] = {
    "មករា": 1,
    "កុម្ភៈ": 2,
    "មីនា": 3,
    "មេសា": 4,
    "ឧសភា": 5,
    "មិថុនា": 6,
    "កក្កដា": 7,
    "សីហា": 8,
    "កញ្ញា": 9,
    "តុលា": 10,
    "វិច្ឆិកា": 11,
    "ធ្នូ": 12,
}

KHMER_MONTHS_SHORT: dict[str, int] = {
    "មករ": 1,
    "កុម្ភ": 2,
    "មិនា": 3,
}

ENGLISH_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%b %d, %Y %I:%M %p",
    "%b %d, %Y %H:%M",
    "%b %d, %Y",
    "%B %d, %Y %I:%M %p",
    "%B %d, %Y",
    "%d %b %Y %I:%M %p",
    "%d %b %Y %H:%M",
    "%d %b %Y",
    "%d %B %Y %H:%M",
    "%d %B %Y",
    "%d-%b-%Y %H:%M",
    "%d-%b-%Y",
)

_NUMBERS = re.compile(r"\d+")
_DAY_MONTH_YEAR = re.compile(r"(\d{1,2})[/\-](\d{1,2})[/\-](\d{2,4})")


def convert_khmer_numerals(text: str) -> str:
    """Replace Khmer digit glyphs with ASCII digits."""
    return text.translate(KHMER_DIGITS) if text else text


def _parse_standard(text: str) -> datetime | None:
    candidate = text.strip()
    if not candidate:
        return None
    try:
        return datetime.fromisoformat(candidate.replace("Z", "+00:00"))
    except ValueError:
        pass
    collapsed = " ".join(candidate.split())
    for layout in ENGLISH_FORMATS:
        try:
            return datetime.strptime(collapsed, layout)
        except ValueError:
            continue
    return None


def _find_khmer_month(text: str) -> tuple[int, str] | None:
    for table in (KHMER_MONTHS, KHMER_MONTHS_SHORT):
        for name, month in table.items():
            if name in text:
                return month, name
    return None


def _parse_khmer_month(text: str) -> datetime | None:
    found = _find_khmer_month(text)
    if found is None:
        return None
    month, name = found
    numbers = [int(n) for n in _NUMBERS.findall(text.replace(name, " MONTH "))]
    if len(numbers) < 2:
        return None

    # The token greater than 31 is the year
    if numbers[0] > 31:
        year, day = numbers[0], numbers[1]
    elif numbers[1] > 31:
        day, year = numbers[0], numbers[1]
    else:
        day = numbers[0]
        year = numbers[2] if len(numbers) >= 3 else numbers[1]
        if year < 100:
            year += 2000

    hour = minute = 0
    if len(numbers) >= 4:
        hour, minute = numbers[-2], numbers[-1]
        if hour > 23:
            hour = 0
        if minute > 59:
            minute = 0

    if not (1 <= day <= 31 and 2020 <= year <= 2100):
        return None
    try:
        return datetime(year, month, day, hour, minute)
    except ValueError:
        return None


def _parse_day_month_year(text: str) -> datetime | None:
    match = _DAY_MONTH_YEAR.search(text)
    if not match:
        return None
    day, month, year = (int(group) for group in match.groups())
    if year < 100:
        year += 2000
    if month > 12 and day <= 12:
        day, month = month, day
    if not (1 <= day <= 31 and 1 <= month <= 12):
        return None
    try:
        return datetime(year, month, day)
    except ValueError:
        return None


def parse_khmer_date(text: str | None) -> datetime | None:
    """Parse a transaction timestamp that may contain Khmer script.

    Supports "2026-01-04T13:35:00", "Jan 04, 2026 01:35 PM",
    "០៦ មករា ២០២៦", "06 មករា 2026 13:35" and "25/01/2026".

    Args:
        text: Raw date text from OCR

    Returns:
        Parsed datetime (naive unless the text carried an offset), or None
    """
    if not text:
        return None

    parsed = _parse_standard(text)
    if parsed is not None:
        return parsed

    normalized = convert_khmer_numerals(text)
    for parse in (_parse_standard, _parse_khmer_month, _parse_day_month_year):
        parsed = parse(normalized)
        if parsed is not None:
            return parsed

    logger.debug(f"Unparseable date text: {text!r}")
    return None
