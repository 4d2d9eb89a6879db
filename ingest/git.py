"""
Git REST wrapper for Azure DevOps repositories, commits and pull requests.
"""
import logging
from typing import List, Dict, Any, Optional
from urllib.parse import quote

from ingest.client import AzureDevOpsClient, FetchError
from normalize.models import VersionDescriptor

logger = logging.getLogger(__name__)

COMMITS_TOP = 2000
PULL_REQUESTS_TOP = 2000


class GitClient:
    """Repository, file, ref, commit and pull request lookups.

    "Not found" answers (missing file, tag or branch) come back as None; every other
    failure is raised as FetchError.
    """

    def __init__(self, client: AzureDevOpsClient):
        self.client = client

    @property
    def org_url(self) -> str:
        return self.client.org_url

    def repository_api_url(self, project: str, repo_id: str) -> str:
        return f"{self.org_url}{project}/_apis/git/repositories/{repo_id}"

    def get_repository(self, repo_id: str) -> Dict[str, Any]:
        logger.debug(f"fetching repo data by id - {repo_id}")
        return self.client.fetch_json(f"{self.org_url}_apis/git/repositories/{repo_id}")

    def get_repository_by_url(self, url: str) -> Dict[str, Any]:
        return self.client.fetch_json(url)

    def list_repositories(self, project: str) -> List[Dict[str, Any]]:
        logger.debug(f"fetching repos list for team project - {project}")
        res = self.client.fetch_json(f"{self.org_url}{project}/_apis/git/repositories") or {}
        repos = res.get('value') or []
        return sorted(repos, key=lambda r: (r.get('name') or '').lower())

    def get_file(self, project: str, repo_id: str, path: str, version: VersionDescriptor, repo_url: str = '') -> Optional[str]:
        """Return the text content of a file at a version, or None when it cannot be read."""
        prefix = repo_url or self.repository_api_url(project, repo_id)
        url = (
            f"{prefix}/items?path={path}&download=true&includeContent=true&recursionLevel=none"
            f"&versionDescriptor.version={version.encoded_version}"
            f"&versionDescriptor.versionType={version.version_type}&api-version=5.1"
        )
        try:
            res = self.client.fetch_json(url)
        except FetchError as ex:
            logger.warning(f"File {path} could not be read: {ex}")
            return None
        if isinstance(res, dict) and res.get('content'):
            return res['content']
        return None

    def _fetch_ref(self, url: str) -> Dict[str, Any]:
        try:
            return self.client.fetch_json(url) or {}
        except FetchError as ex:
            if ex.not_found:
                return {}
            raise

    def get_tag(self, repo_api_url: str, tag: str) -> Optional[Dict[str, Any]]:
        url = f"{repo_api_url}/refs/tags/{quote(tag, safe='')}?peelTags=true&api-version=5.1"
        res = self._fetch_ref(url)
        for ref in res.get('value') or []:
            if ref.get('name', '').split('/')[-1].lower() == tag.lower():
                return {
                    'name': ref['name'].replace('refs/tags/', ''),
                    'objectId': ref.get('objectId'),
                    'url': url,
                    'peeledObjectId': ref.get('peeledObjectId'),
                }
        return None

    def get_branch(self, repo_api_url: str, branch: str) -> Optional[Dict[str, Any]]:
        url = f"{repo_api_url}/refs?filter=heads/{quote(branch, safe='')}&api-version=5.1"
        res = self._fetch_ref(url)
        for ref in res.get('value') or []:
            if ref.get('name', '').lower() == f"refs/heads/{branch}".lower():
                return ref
        return None

    def get_completed_pull_requests(self, project: str, repo_id: str) -> List[Dict[str, Any]]:
        url = f"{self.repository_api_url(project, repo_id)}/pullrequests"
        params = {'status': 'completed', 'includeLinks': 'true', '$top': PULL_REQUESTS_TOP}
        logger.debug(f"request url: {url}")
        res = self.client.fetch_json(url, params=params) or {}
        prs = res.get('value') or []
        logger.info(f"got {len(prs)} pullrequests for repo: {repo_id}")
        return prs

    def get_pull_request_work_item_refs(self, href: str) -> List[Dict[str, Any]]:
        res = self.client.fetch_json(href) or {}
        return res.get('value') or []

    def get_commits_in_commit_range(self, project: str, repo_id: str, from_sha: str, to_sha: str) -> List[Dict[str, Any]]:
        params = {
            'searchCriteria.fromCommitId': from_sha,
            'searchCriteria.toCommitId': to_sha,
            'searchCriteria.includeWorkItems': 'true',
            'searchCriteria.$top': COMMITS_TOP,
        }
        res = self.client.fetch_json(f"{self.repository_api_url(project, repo_id)}/commits", params=params) or {}
        return res.get('value') or []

    def get_commits_batch_page(self, repo_api_url: str, body: Dict[str, Any], skip: int, top: int) -> Dict[str, Any]:
        """POST one commitsbatch page; returns the raw {count, value} payload."""
        url = f"{repo_api_url}/commitsbatch?$skip={skip}&$top={top}&api-version=5.1"
        return self.client.fetch_json(url, method='post', body=body) or {}

