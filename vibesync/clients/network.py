"""Network Monitor: reachability check against the ledger's endpoint"""

import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_CHECK_URL = "https://firestore.googleapis.com"


class NetworkMonitor:
    def __init__(self, check_url: str = DEFAULT_CHECK_URL, timeout: float = 3.0):
        self._check_url = check_url
        self._timeout = timeout

    def is_connected(self) -> bool:
        """True if the check URL answers at all; any HTTP status counts as connected."""
        try:
            requests.head(self._check_url, timeout=self._timeout, allow_redirects=False)
            return True
        except requests.RequestException as e:
            logger.debug(f"Connectivity check failed: {e}")
            return False
