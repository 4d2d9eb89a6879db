"""
Commit batch paginator.
Walks the commitsbatch endpoint in fixed-size pages and wraps each commit as an ExtendedCommit.
"""
import logging
from typing import List, Optional

from ingest.git import GitClient
from normalize.models import ExtendedCommit, VersionDescriptor
from normalize.util import normalize_commit, extend_commit

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_PAGES = 1000
LOG_EVERY = 500


def build_batch_body(item_version: VersionDescriptor, compare_version: VersionDescriptor, item_path: str = '') -> dict:
    body = {
        'itemVersion': item_version.to_dict(),
        'compareVersion': compare_version.to_dict(),
        'includeWorkItems': True,
    }
    if item_path:
        body['itemPath'] = item_path
        body['historyMode'] = 'fullHistory'
    return body


def get_commit_batch(git: GitClient, repo_api_url: str, item_version: VersionDescriptor, compare_version: VersionDescriptor, item_path: str = '', max_pages: Optional[int] = None) -> List[ExtendedCommit]:
    """Return every commit between two versions, in server order.

    Pages are requested sequentially until one reports a zero count. A failing page is
    logged and the commits gathered so far are returned.
    """
    body = build_batch_body(item_version, compare_version, item_path)
    max_pages = max_pages or MAX_PAGES
    commits: List[ExtendedCommit] = []
    skip = 0
    try:
        for _ in range(max_pages):
            page = git.get_commits_batch_page(repo_api_url, body, skip, PAGE_SIZE)
            if not page.get('count'):
                break
            for raw in page.get('value') or []:
                if len(commits) % LOG_EVERY == 0:
                    logger.debug(f"commit number {len(commits) + 1}")
                commits.append(extend_commit(normalize_commit(raw)))
            skip += PAGE_SIZE
        else:
            logger.warning(f"stopped commit batch for {repo_api_url} after {max_pages} pages")
    except Exception as ex:
        logger.error(f"Cannot fetch commit batch: {ex}")
    logger.info(f"got {len(commits)} commits for {repo_api_url}")
    return commits


def get_commit_range(git: GitClient, project: str, repo_id: str, from_sha: str, to_sha: str) -> List[ExtendedCommit]:
    """Commits between two SHAs through the commits endpoint, in one request.

    Fetch errors propagate to the caller.
    """
    raw_commits = git.get_commits_in_commit_range(project, repo_id, from_sha, to_sha)
    logger.info(f"got {len(raw_commits)} commits for {repo_id} between {from_sha} and {to_sha}")
    return [extend_commit(normalize_commit(raw)) for raw in raw_commits]
