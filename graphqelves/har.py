"""
HAR Loading.

Reads HTTP Archive files exported from browser developer tools and replays their
entries through the capture monitor, as if they had just been captured.
"""

import json
import logging
from pathlib import Path
from typing import List, Union

from .core import CaptureMonitor

logger = logging.getLogger("graphqelves.har")


def har_entries(document: dict) -> List[dict]:
    """Returns log.entries from a decoded HAR document.

    Raises:
        ValueError: If the document has no entries list.
    """
    log = document.get("log") if isinstance(document, dict) else None
    entries = log.get("entries") if isinstance(log, dict) else None
    if not isinstance(entries, list):
        raise ValueError("HAR document has no log.entries list")
    return entries


def load_har(path: Union[str, Path]) -> List[dict]:
    """Loads the entries of a HAR file.

    Raises:
        ValueError: If the file is not valid JSON or not a HAR document.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"{path} is not valid JSON: {e}") from e
    entries = har_entries(document)
    logger.info(f"Loaded {len(entries)} entries from {path}")
    return entries


async def replay_har(path: Union[str, Path], capture: CaptureMonitor) -> int:
    """Feeds every entry of a HAR file to the monitor and returns the event count."""
    return await capture.ingest(load_har(path))
