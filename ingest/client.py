"""
Authenticated JSON client for the Azure DevOps REST surface.
The REST wrappers in this package go through AzureDevOpsClient.fetch_json.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from storage.retry import perform_request_with_retries

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


class FetchError(Exception):
    """Raised when a REST call fails (non-2xx status or network error)."""

    def __init__(self, url: str, status: int = 0, body: Any = None, message: str = ''):
        self.url = url
        self.status = status
        self.body = body
        detail = message or (f"status {status}" if status else "network error")
        super().__init__(f"Request to {url} failed: {detail}")

    @property
    def not_found(self) -> bool:
        return self.status == 404


def run_concurrently(func: Callable[[Any], Any], items: Iterable[Any], max_workers: int = DEFAULT_MAX_WORKERS) -> List[Any]:
    """Run func over items as one batch and wait for every result.

    Results keep the order of items. The first exception raised by func propagates
    after the whole batch has finished.
    """
    items = list(items)
    if not items:
        return []
    if len(items) == 1:
        return [func(items[0])]
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as executor:
        futures = [executor.submit(func, item) for item in items]
        return [f.result() for f in futures]


class AzureDevOpsClient:
    """Thin authenticated client used by every REST wrapper in this package."""

    def __init__(self, org_url: str, token: str, max_retries: Optional[int] = None):
        self.org_url = org_url if org_url.endswith('/') else org_url + '/'
        self.token = token
        self.max_retries = max_retries
        # personal access tokens go in basic auth with an empty user name
        self.auth = ('', token) if token else None
        self.headers = {'Accept': 'application/json'}

    def _request(self, url: str, method: str, body: Any, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        logger.debug(f"{method.upper()} {url}")
        headers = dict(self.headers)
        if body is not None:
            headers['Content-Type'] = 'application/json'
        res = perform_request_with_retries(
            method,
            url,
            headers=headers,
            params=params,
            json_body=body,
            auth=self.auth,
            max_retries=self.max_retries,
        )
        status = res.get('status', 0)
        if not 200 <= status < 300:
            raise FetchError(url, status, res.get('response'), res.get('error') or '')
        return res

    def fetch_json(self, url: str, method: str = 'get', body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        """Return the decoded JSON body of a request, raising FetchError on failure."""
        return self._request(url, method, body, params).get('response')

    def fetch_json_with_headers(self, url: str, method: str = 'get', body: Any = None, params: Optional[Dict[str, Any]] = None) -> Tuple[Any, Dict[str, Any]]:
        res = self._request(url, method, body, params)
        return res.get('response'), res.get('headers') or {}

