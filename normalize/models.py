"""
Normalized entities read from the Azure DevOps REST surface.
"""

from typing import List, Optional, Dict, Any, Tuple

# repository resource discriminants
SELF_REPOSITORY = 'self'
DESIGNER_REPOSITORY = '__designer_repo'

VERSION_TYPES = ('branch', 'tag', 'commit')


class VersionDescriptor:
    """
    Identifies a point in history: a branch, a tag or a commit.
    """
    def __init__(self, version: str, version_type: str = 'branch'):
        if version_type not in VERSION_TYPES:
            raise ValueError(f"unsupported version type: {version_type}")
        self.version = version
        self.version_type = version_type

    @property
    def encoded_version(self) -> str:
        """Version with '/' and '#' percent-encoded for use in a query string."""
        if not self.version:
            return self.version
        return self.version.replace('/', '%2F').replace('#', '%23')

    def at_commit(self, commit_id: str) -> 'VersionDescriptor':
        return VersionDescriptor(commit_id, 'commit')

    def to_dict(self) -> Dict[str, str]:
        return {'version': self.version, 'versionType': self.version_type}

    def __eq__(self, other):
        return isinstance(other, VersionDescriptor) and self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.version, self.version_type))

    def __repr__(self):
        return f"VersionDescriptor({self.version!r}, {self.version_type!r})"


class Commit:
    """
    A commit as returned by the git commits APIs. Immutable once fetched.
    """
    def __init__(self, commit_id: str, committer_name: str = '', committer_date: str = '', comment: str = '', work_item_ids: Optional[List[Any]] = None, author_name: Optional[str] = None, author_date: Optional[str] = None, remote_url: Optional[str] = None, raw: Optional[Dict[str, Any]] = None):
        self.commit_id = commit_id
        self.committer_name = committer_name
        self.committer_date = committer_date
        self.comment = comment
        self.work_item_ids = list(work_item_ids or [])
        self.author_name = author_name
        self.author_date = author_date
        self.remote_url = remote_url
        self.raw = raw or {}

    @property
    def has_work_items(self) -> bool:
        return len(self.work_item_ids) > 0

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'commitId': self.commit_id,
            'committer': {'name': self.committer_name, 'date': self.committer_date},
            'comment': self.comment,
            'workItems': [{'id': wid} for wid in self.work_item_ids],
            'remoteUrl': self.remote_url,
        }
        if self.author_name is not None or self.author_date is not None:
            data['author'] = {'name': self.author_name, 'date': self.author_date}
        return data


class ExtendedCommit:
    """
    Commit plus the committer name and the commit day (YYYY-MM-DD).
    """
    def __init__(self, commit: Commit, committer_name: str, commit_date: str):
        self.commit = commit
        self.committer_name = committer_name
        self.commit_date = commit_date

    @property
    def commit_id(self) -> str:
        return self.commit.commit_id

    def to_dict(self) -> Dict[str, Any]:
        return {'commit': self.commit.to_dict(), 'committerName': self.committer_name, 'commitDate': self.commit_date}


class PullRequest:
    """
    Completed pull request with the link to its work items, when it has any.
    """
    def __init__(self, pull_request_id: int, title: str = '', description: str = '', created_by: str = '', creation_date: Optional[str] = None, closed_date: Optional[str] = None, last_merge_commit_id: Optional[str] = None, work_items_href: Optional[str] = None, raw: Optional[Dict[str, Any]] = None):
        self.pull_request_id = pull_request_id
        self.title = title
        self.description = description
        self.created_by = created_by
        self.creation_date = creation_date
        self.closed_date = closed_date
        self.last_merge_commit_id = last_merge_commit_id
        self.work_items_href = work_items_href
        self.raw = raw or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pullRequestId': self.pull_request_id,
            'title': self.title,
            'description': self.description,
            'createdBy': self.created_by,
            'creationDate': self.creation_date,
            'closedDate': self.closed_date,
            'lastMergeCommit': {'commitId': self.last_merge_commit_id},
        }


class RepositoryResource:
    """
    Primary repository resource of a pipeline run.

    kind is resolved once at parse time: SELF_REPOSITORY when the run declares a `self`
    checkout, DESIGNER_REPOSITORY for classic (designer) pipelines.
    """
    def __init__(self, kind: str, repository_id: str, repository_type: Optional[str] = None, version: Optional[str] = None, ref_name: Optional[str] = None):
        if kind not in (SELF_REPOSITORY, DESIGNER_REPOSITORY):
            raise ValueError(f"unknown repository resource kind: {kind}")
        self.kind = kind
        self.repository_id = repository_id
        self.repository_type = repository_type
        self.version = version
        self.ref_name = ref_name

    def __repr__(self):
        return f"RepositoryResource({self.kind!r}, {self.repository_id!r}, version={self.version!r}, ref_name={self.ref_name!r})"


class RepositoryResourceEntry:
    """
    One entry of a run's resources.repositories map.
    """
    def __init__(self, alias: str, repository_id: str, repository_type: Optional[str], version: Optional[str], ref_name: Optional[str] = None):
        self.alias = alias
        self.repository_id = repository_id
        self.repository_type = repository_type
        self.version = version
        self.ref_name = ref_name


class PipelineResourceRef:
    """
    One entry of a run's resources.pipelines map: an upstream pipeline pinned to a version.
    """
    def __init__(self, alias: str, pipeline_id: Optional[int], url: str = '', pipeline_name: Optional[str] = None, version: Optional[str] = None, branch: Optional[str] = None, project: Optional[str] = None, run_id: Optional[int] = None):
        self.alias = alias
        self.pipeline_id = pipeline_id
        self.url = url
        self.pipeline_name = pipeline_name
        self.version = version
        self.branch = branch
        self.project = project
        self.run_id = run_id


class PipelineRun:
    """
    One execution of a pipeline, with its parsed resource graph.
    """
    def __init__(self, run_id: int, result: Optional[str] = None, state: Optional[str] = None, name: Optional[str] = None, repository: Optional[RepositoryResource] = None, repositories: Optional[List[RepositoryResourceEntry]] = None, pipelines: Optional[List[PipelineResourceRef]] = None, raw: Optional[Dict[str, Any]] = None):
        self.run_id = run_id
        self.result = result
        self.state = state
        self.name = name
        self.repository = repository
        self.repositories = repositories or []
        self.pipelines = pipelines or []
        self.raw = raw or {}


class ResourceRepository:
    """
    Repository referenced by a run, deduplicated by (repo_name, repo_sha1, url).
    """
    def __init__(self, repo_name: str, repo_sha1: str, url: str):
        self.repo_name = repo_name
        self.repo_sha1 = repo_sha1
        self.url = url

    def key(self) -> Tuple[str, str, str]:
        return (self.repo_name, self.repo_sha1, self.url)

    def __eq__(self, other):
        return isinstance(other, ResourceRepository) and self.key() == other.key()

    def __hash__(self):
        return hash(self.key())

    def to_dict(self) -> Dict[str, Any]:
        return {'repoName': self.repo_name, 'repoSha1': self.repo_sha1, 'url': self.url}


class ResourcePipeline:
    """
    Upstream pipeline referenced by a run, resolved to a concrete build.
    """
    def __init__(self, name: str, build_id: int, definition_id: int, build_number: str, team_project: str, provider: str):
        self.name = name
        self.build_id = build_id
        self.definition_id = definition_id
        self.build_number = build_number
        self.team_project = team_project
        self.provider = provider

    def key(self) -> Tuple[Any, ...]:
        return (self.name, self.build_id, self.definition_id, self.build_number, self.team_project, self.provider)

    def __eq__(self, other):
        return isinstance(other, ResourcePipeline) and self.key() == other.key()

    def __hash__(self):
        return hash(self.key())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'buildId': self.build_id,
            'definitionId': self.definition_id,
            'buildNumber': self.build_number,
            'teamProject': self.team_project,
            'provider': self.provider,
        }


class Submodule:
    """
    A submodule whose pointer changed between the source and target versions.
    """
    def __init__(self, git_submodule_name: str, git_sub_repo_url: str, git_sub_repo_name: str, source_sha1: str, target_sha1: str):
        self.git_submodule_name = git_submodule_name
        self.git_sub_repo_url = git_sub_repo_url
        self.git_sub_repo_name = git_sub_repo_name
        self.source_sha1 = source_sha1
        self.target_sha1 = target_sha1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'gitSubModuleName': self.git_submodule_name,
            'gitSubRepoUrl': self.git_sub_repo_url,
            'gitSubRepoName': self.git_sub_repo_name,
            'sourceSha1': self.source_sha1,
            'targetSha1': self.target_sha1,
        }
