"""GitHub release used as the fallback host for calendar artifacts."""
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from processor.errors import FallbackError

logger = logging.getLogger(__name__)


class GitHubReleaseHost:
    """Stores artifacts as assets of a release looked up by tag."""

    DEFAULT_API_URL = "https://api.github.com"
    API_VERSION = "2022-11-28"
    RELEASE_NAME = "Airtable ICS Attachments"
    RELEASE_BODY = "Auto-generated release for Airtable ICS fallback uploads."

    def __init__(
        self,
        token: str,
        repo: str,
        api_url: Optional[str] = None,
        timeout: int = 30
    ):
        """
        Initialize the release host.

        Args:
            token: GitHub token with contents write access
            repo: Repository in owner/name form
            api_url: REST API root (default: https://api.github.com)
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.repo = repo
        self.api_url = (api_url or self.DEFAULT_API_URL).rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {token}',
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': self.API_VERSION
        })

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise FallbackError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _body(response: requests.Response) -> Any:
        if not response.text:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def get_or_create_release(self, tag: str) -> Dict[str, Any]:
        """
        Look up a release by tag, creating it when it does not exist.

        Only a 404 on lookup leads to creation; any other failure is fatal.

        Raises:
            FallbackError: If the lookup or the creation fails
        """
        url = f"{self.api_url}/repos/{self.repo}/releases/tags/{quote(tag, safe='')}"
        response = self._request('GET', url)
        if response.ok:
            return self._body(response) or {}
        if response.status_code != 404:
            raise FallbackError(
                "Failed to fetch release by tag",
                status=response.status_code,
                body=self._body(response)
            )

        logger.info(f"Release {tag} not found in {self.repo}, creating it")
        created = self._request(
            'POST',
            f"{self.api_url}/repos/{self.repo}/releases",
            json={
                'tag_name': tag,
                'name': self.RELEASE_NAME,
                'body': self.RELEASE_BODY,
                'draft': False,
                'prerelease': False
            }
        )
        if not created.ok:
            raise FallbackError(
                "Failed to create release",
                status=created.status_code,
                body=self._body(created)
            )
        return self._body(created) or {}

    def delete_asset(self, asset_id: Any) -> None:
        """Delete a release asset; an already-absent asset is not an error."""
        response = self._request(
            'DELETE',
            f"{self.api_url}/repos/{self.repo}/releases/assets/{asset_id}"
        )
        if not response.ok and response.status_code != 404:
            raise FallbackError(
                "Failed to delete existing release asset",
                status=response.status_code,
                body=self._body(response)
            )

    def upload(
        self,
        tag: str,
        filename: str,
        content: bytes,
        content_type: str = 'text/calendar'
    ) -> str:
        """
        Replace the asset named filename in the tagged release.

        Args:
            tag: Release tag grouping the assets
            filename: Asset name; an existing asset with this name is deleted first
            content: Asset bytes
            content_type: MIME type of the asset

        Returns:
            Public download URL of the uploaded asset

        Raises:
            FallbackError: On any host failure, or when no download URL is returned
        """
        release = self.get_or_create_release(tag)

        for asset in release.get('assets') or []:
            if asset and asset.get('name') == filename:
                logger.info(f"Deleting existing asset {filename} from release {tag}")
                self.delete_asset(asset.get('id'))
                break

        upload_base = str(release.get('upload_url') or '').split('{')[0]
        if not upload_base:
            raise FallbackError("GitHub release upload_url is missing.")

        logger.info(f"Uploading {filename} to release {tag} of {self.repo}")
        uploaded = self._request(
            'POST',
            upload_base,
            params={'name': filename},
            data=content,
            headers={'Content-Type': content_type}
        )
        if not uploaded.ok:
            raise FallbackError(
                "Failed to upload release asset",
                status=uploaded.status_code,
                body=self._body(uploaded)
            )

        data = self._body(uploaded)
        download_url = data.get('browser_download_url') if isinstance(data, dict) else None
        if not isinstance(download_url, str) or not download_url:
            raise FallbackError("Upload succeeded but browser_download_url is missing.")

        return download_url
