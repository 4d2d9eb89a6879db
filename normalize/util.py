"""
Normalization utility helpers.
Small helpers to turn raw REST payloads into normalize.models entities.
"""
import re
from typing import Dict, Any, Optional, List

from normalize.models import (
    Commit,
    ExtendedCommit,
    PullRequest,
    PipelineRun,
    PipelineResourceRef,
    RepositoryResource,
    RepositoryResourceEntry,
    SELF_REPOSITORY,
    DESIGNER_REPOSITORY,
)

_PIPELINE_RUN_URL = re.compile(r'/_apis/pipelines/(\d+)/runs/(\d+)')
_BUILD_URL = re.compile(r'/_apis/build/builds/(\d+)')


def _name_and_date(raw: Optional[Dict[str, Any]]):
    raw = raw or {}
    return raw.get('name') or '', raw.get('date') or ''


def normalize_commit(raw: Dict[str, Any]) -> Commit:
    """Create a Commit from a raw commit dict (commits, commitsbatch or pull request payloads)."""
    committer_name, committer_date = _name_and_date(raw.get('committer'))
    author = raw.get('author')
    author_name, author_date = (None, None)
    if author:
        author_name, author_date = _name_and_date(author)
    work_item_ids = [wi.get('id') for wi in (raw.get('workItems') or []) if isinstance(wi, dict) and wi.get('id') is not None]
    return Commit(
        commit_id=raw.get('commitId') or '',
        committer_name=committer_name,
        committer_date=str(committer_date),
        comment=raw.get('comment') or '',
        work_item_ids=work_item_ids,
        author_name=author_name,
        author_date=author_date,
        remote_url=raw.get('remoteUrl'),
        raw=raw,
    )


def extend_commit(commit: Commit) -> ExtendedCommit:
    """Wrap a commit with its committer name and the day part of its commit date.

    Raises ValueError when the commit has no committer date.
    """
    if not commit.committer_date:
        raise ValueError(f"commit {commit.commit_id} has no committer date")
    return ExtendedCommit(commit, commit.committer_name, commit.committer_date[:10])


def normalize_pull_request(raw: Dict[str, Any]) -> PullRequest:
    created_by = raw.get('createdBy') or {}
    links = raw.get('_links') or {}
    work_items_href = (links.get('workItems') or {}).get('href')
    last_merge = raw.get('lastMergeCommit') or {}
    return PullRequest(
        pull_request_id=raw.get('pullRequestId'),
        title=raw.get('title') or '',
        description=raw.get('description') or '',
        created_by=created_by.get('displayName') or '' if isinstance(created_by, dict) else str(created_by),
        creation_date=raw.get('creationDate'),
        closed_date=raw.get('closedDate'),
        last_merge_commit_id=last_merge.get('commitId'),
        work_items_href=work_items_href,
        raw=raw,
    )


def _repository_entry(alias: str, raw: Dict[str, Any]) -> Optional[RepositoryResourceEntry]:
    if not isinstance(raw, dict):
        return None
    repo = raw.get('repository') or {}
    if not repo.get('id'):
        return None
    return RepositoryResourceEntry(alias, repo.get('id'), repo.get('type'), raw.get('version'), raw.get('refName'))


def _primary_repository(repositories: Dict[str, Any]) -> Optional[RepositoryResource]:
    # older payloads nest the alias map under an index key
    candidates = [repositories]
    nested = repositories.get('0')
    if isinstance(nested, dict):
        candidates.insert(0, nested)
    for kind in (SELF_REPOSITORY, DESIGNER_REPOSITORY):
        for mapping in candidates:
            entry = mapping.get(kind)
            if isinstance(entry, dict) and (entry.get('repository') or {}).get('id'):
                repo = entry['repository']
                return RepositoryResource(kind, repo['id'], repo.get('type'), entry.get('version'), entry.get('refName'))
    return None


def _repository_entries(repositories: Dict[str, Any]) -> List[RepositoryResourceEntry]:
    entries = []
    for alias, raw in repositories.items():
        if alias == '0' and isinstance(raw, dict) and 'repository' not in raw:
            entries.extend(_repository_entries(raw))
            continue
        entry = _repository_entry(alias, raw)
        if entry:
            entries.append(entry)
    return entries


def parse_run_id_from_url(url: str) -> Optional[int]:
    """Return the run id embedded in a pipeline-run or build API URL, or None."""
    if not url:
        return None
    m = _PIPELINE_RUN_URL.search(url)
    if m:
        return int(m.group(2))
    m = _BUILD_URL.search(url)
    if m:
        return int(m.group(1))
    return None


def _pipeline_ref(alias: str, raw: Dict[str, Any]) -> PipelineResourceRef:
    pipeline = raw.get('pipeline') or {}
    url = pipeline.get('url') or ''
    run_id = raw.get('runId')
    if run_id is None:
        run_id = parse_run_id_from_url(url) if '/runs/' in url else None
    return PipelineResourceRef(
        alias=alias,
        pipeline_id=pipeline.get('id'),
        url=url,
        pipeline_name=pipeline.get('name'),
        version=raw.get('version'),
        branch=raw.get('branch'),
        project=raw.get('project'),
        run_id=run_id,
    )


def normalize_pipeline_run(raw: Dict[str, Any]) -> PipelineRun:
    """Create a PipelineRun; the primary repository kind is decided here, once."""
    resources = raw.get('resources') or {}
    repositories = resources.get('repositories') or {}
    pipelines = resources.get('pipelines') or {}
    return PipelineRun(
        run_id=raw.get('id'),
        result=raw.get('result'),
        state=raw.get('state'),
        name=raw.get('name'),
        repository=_primary_repository(repositories) if isinstance(repositories, dict) else None,
        repositories=_repository_entries(repositories) if isinstance(repositories, dict) else [],
        pipelines=[_pipeline_ref(alias, p) for alias, p in pipelines.items() if isinstance(p, dict)],
        raw=raw,
    )


def normalize_branch_name(branch: Optional[str]) -> Optional[str]:
    """Return the fully-qualified ref form of a branch name (refs/heads/...)."""
    if not branch:
        return branch
    if branch.startswith('refs/'):
        return branch
    return f"refs/heads/{branch}"


def team_project_from_url(url: str) -> Optional[str]:
    """Return the path segment just before `_apis` in an API URL."""
    if not url:
        return None
    parts = url.split('?')[0].split('/')
    if '_apis' not in parts:
        return None
    idx = parts.index('_apis')
    return parts[idx - 1] if idx > 0 and parts[idx - 1] else None


def pipeline_url_to_build_url(url: str) -> Optional[str]:
    """Rewrite a pipeline-definition API URL to the build API form, dropping the revision query."""
    if not url or '/_apis/pipelines/' not in url:
        return None
    idx = url.find('?revision')
    if idx >= 0:
        url = url[:idx]
    return url.replace('/_apis/pipelines/', '/_apis/build/builds/')
