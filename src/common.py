"""Common utilities and types for cluster provisioning."""

import logging

import requests

logger = logging.getLogger(__name__)


class CloudupError(Exception):
    """Base exception for provisioning errors.

    Every error carries a short code so failures can be matched in
    scripts without parsing the message.
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


def parse_zone_list(value: str) -> list[str]:
    """Parse a comma-separated zone list.

    Entries are trimmed and lower-cased; empty entries are dropped.
    """
    zones = []
    for zone in value.split(','):
        zone = zone.strip().lower()
        if not zone:
            continue
        zones.append(zone)
    return zones


def read_location(url: str, timeout: int = 30) -> bytes:
    """Fetch the contents of a URL.

    Raises:
        requests.RequestException: If the request fails or returns an error status
    """
    logger.debug(f"Fetching {url}")
    resp = requests.get(url, timeout=timeout)
    resp.raise_for_status()
    return resp.content
