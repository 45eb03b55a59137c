"""
CMS Client - HTTP access to the central content management server.

Point reads return None when the record does not exist (HTTP 404) so callers
can treat a missing reference as "skip". Network failures and server errors
raise CMSClientError, which callers treat as transient.
"""

from typing import Any, Dict, List, Optional

import requests

from src.common.logger import setup_logger

logger = setup_logger(__name__)


class CMSClientError(Exception):
    """Transient failure talking to the CMS (network error or 5xx)."""
    pass


class CMSClient:
    """Client for the CMS REST API (/api/v1)."""

    DEFAULT_TIMEOUT = 10

    def __init__(self, cms_url: str = "http://localhost:5001", timeout: int = DEFAULT_TIMEOUT):
        self.cms_url = cms_url.rstrip('/')
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.cms_url}/api/v1{path}"

    def _request(self, method: str, path: str, **kwargs) -> Optional[Dict[str, Any]]:
        """
        Perform a request and decode the JSON body.

        Returns:
            Decoded body, or None if the CMS answered 404

        Raises:
            CMSClientError: On network failure, 5xx or undecodable body
        """
        url = self._url(path)
        try:
            response = requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            logger.warning(f"CMS timeout: {method} {url}")
            raise CMSClientError(f"Timeout contacting CMS: {url}") from e
        except requests.RequestException as e:
            logger.warning(f"CMS request error: {method} {url}: {e}")
            raise CMSClientError(str(e)) from e

        if response.status_code == 404:
            logger.debug(f"CMS 404: {method} {url}")
            return None

        if response.status_code >= 500:
            logger.warning(f"CMS server error: HTTP {response.status_code} for {url}")
            raise CMSClientError(f"HTTP {response.status_code} from {url}")

        if response.status_code >= 400:
            logger.error(f"CMS rejected request: HTTP {response.status_code} for {url}")
            raise CMSClientError(f"HTTP {response.status_code} from {url}")

        try:
            return response.json()
        except ValueError as e:
            raise CMSClientError(f"Invalid JSON from {url}") from e

    def get_terminal(self, terminal_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a terminal record."""
        return self._request('GET', f"/terminals/{terminal_id}")

    def get_playlist(self, playlist_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a playlist with its slots (``slots`` key)."""
        return self._request('GET', f"/playlists/{playlist_id}")

    def get_campaign(self, campaign_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a campaign record."""
        return self._request('GET', f"/campaigns/{campaign_id}")

    def get_media(self, media_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a media record."""
        return self._request('GET', f"/media/{media_id}")

    def list_terminal_campaigns(self, terminal_id: str) -> List[Dict[str, Any]]:
        """
        Fallback query: active approved campaigns targeting the terminal or global.

        Returns:
            List of campaign dicts (empty if the terminal is unknown)
        """
        data = self._request('GET', f"/terminals/{terminal_id}/campaigns")
        if not data:
            return []
        return data.get('campaigns', [])

    def send_heartbeat(
        self,
        terminal_id: str,
        current_media: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Report liveness for a terminal.

        Args:
            terminal_id: Terminal identity
            current_media: Display string of the item on screen (monitoring only)

        Returns:
            Updated terminal record, or None if the terminal is unknown
        """
        payload: Dict[str, Any] = {}
        if current_media is not None:
            payload['current_media'] = current_media
        return self._request('POST', f"/terminals/{terminal_id}/heartbeat", json=payload)

    def report_playback(self, terminal_id: str, entries: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """
        Upload a batch of proof-of-play records.

        Returns:
            ``{"terminal_id": ..., "accepted": n}``, or None if the terminal is unknown

        Raises:
            CMSClientError: On network failure or if the CMS refused the batch
        """
        return self._request('POST', f"/terminals/{terminal_id}/playback", json={'entries': entries})
