import logging
from dataclasses import dataclass
from typing import Optional

import requests

from pesos.services.errors import FetchError, FetchTimeout, HttpStatusError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_USER_AGENT = 'PESOS RSS Aggregator/1.0'


@dataclass
class FetchedFeed:
    """Raw body of a feed as returned by the server."""

    url: str
    text: str
    content_type: Optional[str] = None
    status_code: int = 200


class FeedFetcher:
    """Retrieve raw feed bodies over HTTP."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, user_agent: str = DEFAULT_USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    def fetch(self, url: str) -> FetchedFeed:
        """
        Fetch a feed URL.

        Raises FetchTimeout when the server does not answer in time,
        HttpStatusError on a non-2xx status and FetchError on any other
        network failure.
        """
        headers = {'User-Agent': self.user_agent}

        try:
            resp = requests.get(url, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise FetchTimeout(f'Timed out after {self.timeout:g}s fetching {url}') from e
        except requests.RequestException as e:
            raise FetchError(f'Request error fetching {url}: {e}') from e

        if not 200 <= resp.status_code < 300:
            raise HttpStatusError(resp.status_code, url)

        logger.debug(f"Fetched {url} ({len(resp.content)} bytes)")
        return FetchedFeed(
            url=url,
            text=resp.text,
            content_type=resp.headers.get('Content-Type'),
            status_code=resp.status_code,
        )
