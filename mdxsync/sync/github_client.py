"""
Asynchronous client for the GitHub repository contents API.

The client is constructed explicitly and handed to the components that need
it; it owns one aiohttp session, created lazily and closed by ``close()`` or
by leaving ``async with``.

Failure mapping:
- 401, and 403 without rate limit headers -> AuthError (never retried)
- 404 -> NotFoundError
- 403/429 with rate limit headers -> sleep until reset (+buffer) or for
  retry-after, then retry; RateLimitedError once the waits are used up or
  when one wait would exceed max_rate_limit_wait_seconds
- 5xx and network errors -> exponential backoff, SourceFetchError when
  attempts run out
"""

import asyncio
import base64
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import aiohttp

from ..config import GITHUB_API_VERSION, USER_AGENT
from .config import SyncConfig
from .error_tracker import AuthError, NotFoundError, RateLimitedError, SourceFetchError
from .logging_manager import get_logger
from .resilience import RateLimitInfo, RetryPolicy

_NEXT_LINK_RE = re.compile(r'<([^>]+)>\s*;\s*rel="next"')


@dataclass
class RemoteEntry:
    """One entry of a directory listing."""
    name: str
    path: str
    type: str  # file, dir, symlink, submodule
    fingerprint: Optional[str] = None

    @property
    def is_dir(self) -> bool:
        return self.type == 'dir'

    @property
    def is_file(self) -> bool:
        return self.type == 'file'


@dataclass
class RemoteFile:
    """Decoded content of a remote file."""
    path: str
    content: str
    fingerprint: Optional[str] = None


class GitHubClient:
    def __init__(self, config: SyncConfig, token: Optional[str] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.repository = config.repository
        self.retry_settings = config.retry
        self.retry_policy = RetryPolicy.from_settings(config.retry)
        self._token = token
        self.session = session
        self._owns_session = session is None
        self.requests_made = 0
        self.logger = get_logger(__name__)

    async def __aenter__(self):
        self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.retry_settings.request_timeout_seconds)
            self.session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self.session

    def _headers(self, accept: str) -> Dict[str, str]:
        if self._token is None:
            self._token = self.config.github_token()
        return {
            'Authorization': f'Bearer {self._token}',
            'Accept': accept,
            'X-GitHub-Api-Version': GITHUB_API_VERSION,
            'User-Agent': USER_AGENT,
        }

    def _contents_url(self, path: str) -> str:
        path = quote(path.strip('/'), safe='/')
        return f'{self.repository.api_url}/repos/{self.repository.owner}/{self.repository.name}/contents/{path}'

    async def _request(self, url: str, params: Optional[Dict[str, Any]] = None, *,
                       accept: str = 'application/vnd.github+json',
                       raw: bool = False) -> Tuple[Any, Any]:
        """
        Perform a GET with retry and rate limit handling.

        Returns the decoded JSON (or text when ``raw``) and the response
        headers.
        """
        session = self._get_session()
        attempt = 0
        rate_limit_waits = 0
        while True:
            try:
                async with session.get(url, params=params, headers=self._headers(accept)) as response:
                    self.requests_made += 1
                    status = response.status
                    headers = response.headers
                    if status == 200:
                        if raw:
                            return await response.text(), headers
                        try:
                            return await response.json(content_type=None), headers
                        except ValueError as e:
                            raise SourceFetchError(f"Invalid JSON from GitHub for {url}: {e}", source_id=url)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                attempt += 1
                if attempt >= self.retry_policy.max_attempts:
                    raise SourceFetchError(f"Network error for {url} after {attempt} attempts: {e}", source_id=url)
                delay = self.retry_policy.compute_backoff(attempt - 1)
                self.logger.warning(f"Network error, retrying in {delay:.1f}s", extra={'details': {'url': url, 'attempt': attempt, 'error': str(e)}})
                await asyncio.sleep(delay)
                continue

            if status == 401:
                raise AuthError(f"GitHub rejected the credential (401) for {url}", source_id=url,
                                recovery_suggestion="Check that the token is valid and not expired")

            if status in (403, 429):
                info = RateLimitInfo.from_headers(headers)
                wait = info.wait_seconds(self.retry_settings.rate_limit_buffer_seconds)
                if wait is None:
                    raise AuthError(f"GitHub denied access ({status}) to {url}", source_id=url,
                                    recovery_suggestion="Check the token's repository permissions")
                if rate_limit_waits >= self.retry_settings.max_rate_limit_waits:
                    raise RateLimitedError(f"Rate limit still exceeded for {url}", source_id=url, retry_after=wait)
                if wait > self.retry_settings.max_rate_limit_wait_seconds:
                    # never retry before the limit resets
                    raise RateLimitedError(f"Rate limit for {url} resets in {wait:.0f}s, beyond the configured wait limit",
                                           source_id=url, retry_after=wait)
                rate_limit_waits += 1
                self.logger.warning(f"GitHub rate limit hit, waiting {wait:.1f}s", extra={'details': {
                    'url': url, 'remaining': info.remaining, 'reset_at': info.reset_at, 'retry_after': info.retry_after}})
                await asyncio.sleep(wait)
                continue

            if status == 404:
                raise NotFoundError(f"Not found: {url}", source_id=url)

            if status >= 500:
                attempt += 1
                if attempt >= self.retry_policy.max_attempts:
                    raise SourceFetchError(f"GitHub returned {status} for {url} after {attempt} attempts", source_id=url)
                delay = self.retry_policy.compute_backoff(attempt - 1)
                self.logger.warning(f"GitHub returned {status}, retrying in {delay:.1f}s", extra={'details': {'url': url, 'attempt': attempt}})
                await asyncio.sleep(delay)
                continue

            raise SourceFetchError(f"GitHub returned {status} for {url}", source_id=url)

    async def list_directory(self, path: str, ref: Optional[str] = None) -> List[RemoteEntry]:
        """
        List a directory on ``ref`` (the configured branch by default),
        following pagination.
        Entries keep the order GitHub returns them in.
        """
        url = self._contents_url(path)
        params = {'ref': ref or self.repository.branch, 'per_page': 100}
        entries: List[RemoteEntry] = []
        while url:
            data, headers = await self._request(url, params)
            if not isinstance(data, list):
                raise SourceFetchError(f"{path} is not a directory", source_id=path)
            for item in data:
                entries.append(RemoteEntry(
                    name=item['name'],
                    path=item['path'],
                    type=item.get('type', 'file'),
                    fingerprint=item.get('sha'),
                ))
            url = self._next_page(headers)
            # the next link already carries the query string
            params = None
        return entries

    async def list_tree(self, path: str, recursive: bool = True, ref: Optional[str] = None) -> List[RemoteEntry]:
        """List the files below ``path``, descending into subdirectories."""
        files: List[RemoteEntry] = []
        pending = [path]
        while pending:
            current = pending.pop(0)
            for entry in await self.list_directory(current, ref=ref):
                if entry.is_dir:
                    if recursive:
                        pending.append(entry.path)
                elif entry.is_file:
                    files.append(entry)
        return files

    async def fetch_file(self, path: str, ref: Optional[str] = None) -> RemoteFile:
        """Fetch and decode one file from ``ref``, or from the configured branch."""
        url = self._contents_url(path)
        params = {'ref': ref or self.repository.branch}
        data, _ = await self._request(url, params)
        if not isinstance(data, dict) or data.get('type', 'file') != 'file':
            raise SourceFetchError(f"{path} is not a file", source_id=path)

        encoding = data.get('encoding')
        if encoding == 'base64':
            try:
                content = base64.b64decode(data.get('content') or '').decode('utf-8')
            except (ValueError, UnicodeDecodeError) as e:
                raise SourceFetchError(f"Could not decode {path}: {e}", source_id=path)
        else:
            # files over 1MB come back without inline content
            content, _ = await self._request(url, params, accept='application/vnd.github.raw', raw=True)

        return RemoteFile(path=data.get('path', path), content=content, fingerprint=data.get('sha'))

    async def check_rate_limit(self) -> RateLimitInfo:
        """Query the remaining core API quota."""
        data, _ = await self._request(f'{self.repository.api_url}/rate_limit')
        core = data.get('resources', {}).get('core', {}) if isinstance(data, dict) else {}
        info = RateLimitInfo(limit=core.get('limit'), remaining=core.get('remaining'), reset_at=core.get('reset'))
        if info.remaining is not None and info.remaining < 10:
            self.logger.warning(f"GitHub rate limit nearly exhausted: {info.remaining} requests left",
                                extra={'details': {'reset_at': info.reset_at}})
        return info

    @staticmethod
    def _next_page(headers) -> Optional[str]:
        link = headers.get('link') if headers else None
        if not link:
            return None
        match = _NEXT_LINK_RE.search(link)
        return match.group(1) if match else None
