"""Fixture feed URL loader"""
import re
from pathlib import Path
from typing import Iterable, List

from .logger import setup_logger

logger = setup_logger(__name__)

_URL_PATTERN = re.compile(r'^(webcal|https?)://\S+$', re.IGNORECASE)


def normalize_feed_url(url: str) -> str:
    """webcal:// feeds are fetched over https"""
    url = url.strip()
    if url.lower().startswith("webcal://"):
        return "https://" + url[len("webcal://"):]
    return url


def parse_feed_links_file(file_path: str) -> List[str]:
    """
    Read feed URLs from a links file

    Expected file format, one feed per line:
    League A: webcal://example.org/league-a.ics
    https://example.org/league-b.ics

    Blank lines and lines starting with '#' are ignored.

    Args:
        file_path: Path to the links file

    Returns:
        Feed URLs in file order, webcal:// rewritten to https://
    """
    urls: List[str] = []
    file = Path(file_path)

    if not file.exists():
        logger.debug(f"Feed links file not found: {file_path}")
        return urls

    with open(file, 'r', encoding='utf-8') as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            candidate = line
            if not _URL_PATTERN.match(candidate):
                # "Label: url"
                if ':' not in line:
                    logger.warning(f"Line {line_num} in {file_path} has no URL - skipping: {line}")
                    continue
                candidate = line.split(':', 1)[1].strip()

            if not _URL_PATTERN.match(candidate):
                logger.warning(f"Line {line_num} in {file_path} has an invalid URL - skipping: {candidate}")
                continue

            urls.append(normalize_feed_url(candidate))

    logger.info(f"Parsed {len(urls)} feed URL(s) from {file_path}")
    return urls


def merge_feed_urls(*sources: Iterable[str]) -> List[str]:
    """Concatenate URL lists keeping the first occurrence of each"""
    merged: List[str] = []
    for source in sources:
        for url in source:
            url = normalize_feed_url(url)
            if url and url not in merged:
                merged.append(url)
    return merged
