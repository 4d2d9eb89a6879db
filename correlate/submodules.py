"""
Submodule pointer differ.
Reads .gitmodules at the target version and reports every submodule whose pointer moved
between the source and target versions.
"""
import logging
from typing import List, Any, Optional
from urllib.parse import unquote

from normalize.models import Commit, ExtendedCommit, Submodule, VersionDescriptor

logger = logging.getLogger(__name__)

GITMODULES_PATH = '.gitmodules'


class SubmoduleEntry:
    def __init__(self, name: str, path: str = '', url: str = ''):
        self.name = name
        self.path = path
        self.url = url


def _section_name(line: str) -> str:
    name = line.strip()[len('[submodule'):].strip().rstrip(']').strip().strip('"')
    return name.replace('/', '_')


def _value(line: str) -> str:
    return line.split('=', 1)[1].strip()


def parse_gitmodules(text: str) -> List[SubmoduleEntry]:
    """Parse `.gitmodules` text into entries; `path` and `url` attach to the latest header."""
    entries: List[SubmoduleEntry] = []
    current: Optional[SubmoduleEntry] = None
    lines = text.split('\r\n') if '\r\n' in text else text.split('\n')
    for line in lines:
        stripped = line.strip()
        if stripped.startswith('[submodule'):
            current = SubmoduleEntry(_section_name(stripped))
            entries.append(current)
            continue
        if current is None or '=' not in stripped:
            continue
        key = stripped.split('=', 1)[0].strip()
        if key == 'path':
            current.path = _value(stripped)
        elif key == 'url':
            current.url = _value(stripped)
    return entries


def resolve_relative_url(repo_api_url: str, url: str) -> str:
    """Resolve a `../`-relative submodule URL against the parent repository's API URL.

    One trailing path segment of repo_api_url is dropped per leading `../`.
    """
    if not url.startswith('../'):
        return url
    ups = 0
    rest = url
    while rest.startswith('../'):
        ups += 1
        rest = rest[3:]
    segments = repo_api_url.rstrip('/').split('/')
    return '/'.join(segments[:len(segments) - ups]) + '/' + rest


def _commit_id(item: Any) -> Optional[str]:
    if isinstance(item, ExtendedCommit):
        return item.commit_id
    if isinstance(item, Commit):
        return item.commit_id
    if isinstance(item, dict):
        nested = item.get('commit')
        if isinstance(nested, dict) and nested.get('commitId'):
            return nested['commitId']
        return item.get('commitId')
    return None


class SubmoduleDiffer:
    def __init__(self, git):
        self.git = git

    def _pointer(self, project: str, repo_id: str, path: str, version: VersionDescriptor) -> Optional[str]:
        content = self.git.get_file(project, repo_id, path, version)
        return content.strip() if content else None

    def _scan_back(self, project: str, repo_id: str, entry: SubmoduleEntry, source_version: VersionDescriptor, commits: List[Any]) -> Optional[str]:
        # commits arrive newest first; walk from the oldest one up
        for item in reversed(commits or []):
            commit_id = _commit_id(item)
            if not commit_id:
                logger.warning(f"commit not found for {entry.name}")
                continue
            sha1 = self._pointer(project, repo_id, entry.path, source_version.at_commit(commit_id))
            if sha1:
                return sha1
        return None

    def _diff_entry(self, project: str, repo_id: str, repo_api_url: str, entry: SubmoduleEntry, target_version: VersionDescriptor, source_version: VersionDescriptor, commits: Optional[List[Any]]) -> Optional[Submodule]:
        sub_url = resolve_relative_url(repo_api_url, entry.url)
        target_sha1 = self._pointer(project, repo_id, entry.path, target_version)
        source_sha1 = self._pointer(project, repo_id, entry.path, source_version)
        if not source_sha1:
            source_sha1 = self._scan_back(project, repo_id, entry, source_version, commits)
        if not source_sha1:
            logger.warning(f"{entry.name} pointer not exist in source version {source_version.version_type} {source_version.version} in repository {repo_api_url}")
            return None
        if not target_sha1:
            logger.warning(f"{entry.name} pointer not exist in target version {target_version.version_type} {target_version.version} in repository {repo_api_url}")
            return None
        if source_sha1 == target_sha1:
            logger.warning(f"{entry.name} pointer is the same in source and target version in repository {repo_api_url}")
            return None
        return Submodule(
            git_submodule_name=entry.name,
            git_sub_repo_url=sub_url,
            git_sub_repo_name=unquote(sub_url.rstrip('/').split('/')[-1]),
            source_sha1=source_sha1,
            target_sha1=target_sha1,
        )

    def get_submodules_data(self, project: str, repo_id: str, target_version: VersionDescriptor, source_version: VersionDescriptor, commits: Optional[List[Any]] = None) -> List[Submodule]:
        """Return one Submodule per changed pointer between source_version and target_version.

        A submodule whose source pointer is missing is looked up again at each of the supplied
        commits. Submodules with a missing or unchanged pointer are skipped with a warning, and
        a failed lookup for one submodule does not affect the others.
        """
        submodules: List[Submodule] = []
        if target_version == source_version:
            return submodules
        repo_api_url = self.git.repository_api_url(project, repo_id)
        try:
            manifest = self.git.get_file(project, repo_id, GITMODULES_PATH, target_version)
            entries = parse_gitmodules(manifest) if manifest else []
        except Exception as ex:
            logger.error(f"Error in get_submodules_data: {ex}")
            return submodules
        if not entries:
            return submodules
        logger.info(f"generating submodules data for {repo_id}")
        for entry in entries:
            if not entry.path or not entry.url:
                logger.warning(f"{entry.name} has no path or url in {GITMODULES_PATH}")
                continue
            try:
                submodule = self._diff_entry(project, repo_id, repo_api_url, entry, target_version, source_version, commits)
            except Exception as ex:
                logger.warning(f"skipping submodule {entry.name}: {ex}")
                continue
            if submodule is not None:
                submodules.append(submodule)
        return submodules


def get_submodules_data(git, project: str, repo_id: str, target_version: VersionDescriptor, source_version: VersionDescriptor, commits: Optional[List[Any]] = None) -> List[Submodule]:
    return SubmoduleDiffer(git).get_submodules_data(project, repo_id, target_version, source_version, commits)
