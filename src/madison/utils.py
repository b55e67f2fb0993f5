import datetime
import logging

from dateutil.parser import parse as parse_date

logger = logging.getLogger(__name__)


def try_parse_date(date_str: str | None) -> datetime.datetime | None:
    """Try to parse a date string into an aware UTC datetime.

    Args:
        date_str: The date string to parse (e.g., from HTTP Last-Modified header)

    Returns:
        The parsed datetime, or None if parsing failed or date_str is None
    """

    try:
        parsed = parse_date(date_str) if date_str else None
    except (ValueError, OverflowError) as e:
        logger.debug(f"Failed to parse date '{date_str}': {e}")
        return None
    if parsed is not None and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.UTC)
    return parsed


def split_words(value: str | None) -> list[str]:
    """Split a whitespace or comma separated list, dropping empties and duplicates.

    Examples:
        >>> split_words("main, universe main")
        ['main', 'universe']
    """
    if not value:
        return []
    return list(dict.fromkeys(value.replace(",", " ").split()))
