"""
Pipelines, builds and releases REST wrapper.
"""
import logging
from typing import List, Dict, Any, Optional

from ingest.client import AzureDevOpsClient, FetchError

logger = logging.getLogger(__name__)

# runs with these results never count as history
EXCLUDED_RUN_RESULTS = ('failed', 'canceled')
CONTINUATION_HEADER = 'x-ms-continuationtoken'
RELEASES_TOP = 200
MAX_RELEASE_PAGES = 500


def release_url(url: str) -> str:
    """Release management lives on its own host for cloud organizations."""
    if url.startswith('https://dev.azure.com'):
        return url.replace('https://dev.azure.com', 'https://vsrm.dev.azure.com', 1)
    return url


class PipelinesClient:
    def __init__(self, client: AzureDevOpsClient):
        self.client = client

    @property
    def org_url(self) -> str:
        return self.client.org_url

    def get_run_history(self, project: str, pipeline_id) -> List[Dict[str, Any]]:
        """Return the runs of a pipeline, newest first, without failed or canceled runs."""
        url = f"{self.org_url}{project}/_apis/pipelines/{pipeline_id}/runs"
        res = self.client.fetch_json(url) or {}
        runs = res.get('value')
        if runs is None:
            return []
        return [r for r in runs if r.get('result') not in EXCLUDED_RUN_RESULTS]

    def get_run(self, project: str, pipeline_id, run_id) -> Dict[str, Any]:
        return self.client.fetch_json(f"{self.org_url}{project}/_apis/pipelines/{pipeline_id}/runs/{run_id}")

    def get_build(self, project: Optional[str], build_id) -> Dict[str, Any]:
        """Fetch a build by id, retrying at organization scope when the project lookup fails."""
        if project:
            try:
                return self.client.fetch_json(f"{self.org_url}{project}/_apis/build/builds/{build_id}")
            except FetchError as ex:
                logger.debug(f"build {build_id} not found in {project} ({ex}), trying organization scope")
        return self.client.fetch_json(f"{self.org_url}_apis/build/builds/{build_id}")

    def get_build_by_url(self, url: str) -> Dict[str, Any]:
        return self.client.fetch_json(url)

    def get_build_timeline(self, project: str, build_id) -> List[Dict[str, Any]]:
        url = f"{self.org_url}{project}/_apis/build/builds/{build_id}/timeline?api-version=6.0"
        res = self.client.fetch_json(url) or {}
        return res.get('records') or []

    def find_builds(self, project: str, build_number: str, definition_id=None, branch: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {'buildNumber': build_number, 'api-version': '6.0'}
        if definition_id is not None:
            params['definitions'] = definition_id
        if branch:
            params['branchName'] = branch
        res = self.client.fetch_json(f"{self.org_url}{project}/_apis/build/builds", params=params) or {}
        return res.get('value') or []

    def get_project(self, project_id: str) -> Dict[str, Any]:
        return self.client.fetch_json(f"{self.org_url}_apis/projects/{project_id}?api-version=6.0")

    def get_release_history(self, project: str, definition_id) -> List[Dict[str, Any]]:
        """Return every release of a definition, following continuation tokens one page at a time."""
        base = release_url(f"{self.org_url}{project}/_apis/release/releases")
        releases: List[Dict[str, Any]] = []
        token = None
        for _ in range(MAX_RELEASE_PAGES):
            params = {'definitionId': definition_id, '$top': RELEASES_TOP}
            if token:
                params['continuationToken'] = token
            data, headers = self.client.fetch_json_with_headers(base, params=params)
            releases.extend((data or {}).get('value') or [])
            token = _header(headers, CONTINUATION_HEADER)
            if not token:
                break
        else:
            logger.warning(f"release history for definition {definition_id} stopped after {MAX_RELEASE_PAGES} pages")
        logger.info(f"got {len(releases)} releases for definition {definition_id}")
        return releases


def _header(headers: Dict[str, Any], name: str) -> Optional[str]:
    for key, value in (headers or {}).items():
        if key.lower() == name:
            return value
    return None
