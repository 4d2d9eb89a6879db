"""
Resource graph resolver.

Extracts the repositories and upstream pipelines referenced by a pipeline run and resolves
upstream pipeline references to concrete builds. Build lookup is an ordered list of strategies;
the first one that yields an acceptable build wins.
"""
import logging
import re
import threading
from typing import Callable, List, Dict, Any, Optional, Union

from ingest.client import run_concurrently, DEFAULT_MAX_WORKERS
from normalize.models import PipelineRun, PipelineResourceRef, ResourceRepository, ResourcePipeline
from normalize.util import (
    normalize_pipeline_run,
    normalize_branch_name,
    pipeline_url_to_build_url,
    team_project_from_url,
)

logger = logging.getLogger(__name__)

HOSTED_GIT_RESOURCE_TYPE = 'azureReposGit'
HOSTED_GIT_PROVIDER = 'TfsGit'
BUILD_DEFINITION_TYPE = 'build'

_GUID = re.compile(r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$')


def is_acceptable_build(build: Optional[Dict[str, Any]]) -> bool:
    if not build:
        return False
    return (build.get('definition') or {}).get('type') == BUILD_DEFINITION_TYPE and (build.get('repository') or {}).get('type') == HOSTED_GIT_PROVIDER


def _exact_build_number(builds: List[Dict[str, Any]], version: str) -> List[Dict[str, Any]]:
    return [b for b in builds if b.get('buildNumber') == version]


# Each strategy takes (resolver, ref, project) and returns a build dict or None.

def direct_build(resolver: 'ResourceGraphResolver', ref: PipelineResourceRef, project: Optional[str]) -> Optional[Dict[str, Any]]:
    """The declared run id, or the build the pipeline URL points at when no version is pinned."""
    if ref.run_id is not None:
        return resolver.pipelines.get_build(project, ref.run_id)
    if ref.version:
        return None
    build_url = pipeline_url_to_build_url(ref.url)
    if not build_url:
        return None
    return resolver.pipelines.get_build_by_url(build_url)


def build_by_definition_and_number(resolver: 'ResourceGraphResolver', ref: PipelineResourceRef, project: Optional[str]) -> Optional[Dict[str, Any]]:
    if not ref.version or ref.pipeline_id is None or not project:
        return None
    builds = resolver.pipelines.find_builds(project, ref.version, definition_id=ref.pipeline_id, branch=normalize_branch_name(ref.branch))
    matches = _exact_build_number(builds, ref.version)
    return matches[0] if matches else None


def build_by_number(resolver: 'ResourceGraphResolver', ref: PipelineResourceRef, project: Optional[str]) -> Optional[Dict[str, Any]]:
    if not ref.version or not project:
        return None
    matches = _exact_build_number(resolver.pipelines.find_builds(project, ref.version), ref.version)
    if not matches:
        return None
    wanted = ref.pipeline_name or ref.alias
    for build in matches:
        if (build.get('definition') or {}).get('name') == wanted:
            return build
    return matches[0]


def build_from_run_history(resolver: 'ResourceGraphResolver', ref: PipelineResourceRef, project: Optional[str]) -> Optional[Dict[str, Any]]:
    if not ref.version or ref.pipeline_id is None or not project:
        return None
    for run in resolver.pipelines.get_run_history(project, ref.pipeline_id):
        if run.get('name') == ref.version and run.get('result') == 'succeeded':
            return resolver.pipelines.get_build(project, run.get('id'))
    return None


DEFAULT_STRATEGIES: List[Callable[..., Optional[Dict[str, Any]]]] = [
    direct_build,
    build_by_definition_and_number,
    build_by_number,
    build_from_run_history,
]


class ResourceGraphResolver:
    def __init__(self, pipelines, git, strategies: Optional[List[Callable[..., Optional[Dict[str, Any]]]]] = None, max_workers: int = DEFAULT_MAX_WORKERS):
        self.pipelines = pipelines
        self.git = git
        self.strategies = list(strategies if strategies is not None else DEFAULT_STRATEGIES)
        self.max_workers = max_workers
        self._project_names: Dict[str, str] = {}
        self._project_names_lock = threading.Lock()

    def project_name(self, project: Optional[str]) -> Optional[str]:
        """Turn a project GUID into its name; names and unresolvable ids come back as given."""
        if not project or not _GUID.match(project):
            return project
        with self._project_names_lock:
            if project not in self._project_names:
                try:
                    self._project_names[project] = (self.pipelines.get_project(project) or {}).get('name') or project
                except Exception as ex:
                    logger.warning(f"could not resolve project name of {project}: {ex}")
                    self._project_names[project] = project
            return self._project_names[project]

    def _repository(self, entry) -> Optional[ResourceRepository]:
        try:
            repo = self.git.get_repository(entry.repository_id)
        except Exception as ex:
            logger.warning(f"could not resolve resource repository {entry.alias}: {ex}")
            return None
        return ResourceRepository(repo.get('name'), entry.version, repo.get('url'))

    def get_resource_repositories(self, run: Union[PipelineRun, Dict[str, Any]]) -> List[ResourceRepository]:
        run = run if isinstance(run, PipelineRun) else normalize_pipeline_run(run)
        entries = [e for e in run.repositories if e.repository_type == HOSTED_GIT_RESOURCE_TYPE]
        resolved = run_concurrently(self._repository, entries, self.max_workers)
        return _dedup([r for r in resolved if r is not None])

    def resolve_build(self, ref: PipelineResourceRef) -> Optional[Dict[str, Any]]:
        """Run the strategy chain for one pipeline reference; None when every strategy misses."""
        project = self.project_name(ref.project or team_project_from_url(ref.url))
        for strategy in self.strategies:
            try:
                build = strategy(self, ref, project)
            except Exception as ex:
                logger.debug(f"{strategy.__name__} failed for {ref.alias}: {ex}")
                continue
            if is_acceptable_build(build):
                logger.debug(f"{ref.alias} resolved by {strategy.__name__}")
                return build
        return None

    def _pipeline(self, ref: PipelineResourceRef) -> Optional[ResourcePipeline]:
        try:
            build = self.resolve_build(ref)
        except Exception as ex:
            logger.error(f"Error fetching pipeline {ref.alias} : {ex}")
            return None
        if build is None:
            logger.warning(f"could not resolve resource pipeline {ref.alias}")
            return None
        return ResourcePipeline(
            name=ref.alias,
            build_id=build.get('id'),
            definition_id=(build.get('definition') or {}).get('id'),
            build_number=build.get('buildNumber'),
            team_project=(build.get('project') or {}).get('name'),
            provider=(build.get('repository') or {}).get('type'),
        )

    def get_resource_pipelines(self, run: Union[PipelineRun, Dict[str, Any]]) -> List[ResourcePipeline]:
        run = run if isinstance(run, PipelineRun) else normalize_pipeline_run(run)
        resolved = run_concurrently(self._pipeline, run.pipelines, self.max_workers)
        return _dedup([p for p in resolved if p is not None])


def _dedup(items):
    seen = set()
    out = []
    for item in items:
        if item.key() in seen:
            continue
        seen.add(item.key())
        out.append(item)
    return out
