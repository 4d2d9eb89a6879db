"""
CLI entry point for ado-changeset. Wires the flow: target run -> previous run -> commits -> change set
-> submodules -> resource graph -> report
"""

import argparse
import logging
import os
from datetime import datetime, timezone

from correlate.changeset import ChangeSetAggregator
from correlate.models import ChangeSetResult, LinkedItemsOptions, LINKED_WI_TYPES, LINKED_WI_RELATIONSHIPS
from correlate.submodules import get_submodules_data
from ingest.client import AzureDevOpsClient, FetchError
from ingest.commits import get_commit_batch, get_commit_range
from ingest.git import GitClient
from ingest.pipelines import PipelinesClient
from ingest.tickets import TicketsClient
from lineage.resolver import PipelineLineageResolver
from lineage.resources import ResourceGraphResolver
from normalize.models import VersionDescriptor, VERSION_TYPES
from normalize.util import normalize_pipeline_run
from report.renderer import render
from storage.retry import configure_retry

logger = logging.getLogger(__name__)


class Clients:
    """The REST wrappers sharing one authenticated transport."""

    def __init__(self, org_url: str, token: str):
        transport = AzureDevOpsClient(org_url, token)
        self.git = GitClient(transport)
        self.pipelines = PipelinesClient(transport)
        self.tickets = TicketsClient(transport)


def _resolve_connection(args, parser):
    """Resolve org URL and token from CLI args or environment variables and attach them to args.
    Calls parser.error() if either is missing.
    """
    org_url = args.org_url or os.getenv('ADO_ORG_URL')
    token = args.token or os.getenv('ADO_TOKEN')
    missing = []
    if not org_url:
        missing.append('org url (CLI flag --org-url or env ADO_ORG_URL)')
    if not token:
        missing.append('token (CLI flag --token or env ADO_TOKEN)')
    if missing:
        parser.error('Missing required settings: ' + ', '.join(missing))
    args.org_url = org_url
    args.token = token


def _linked_options(args) -> LinkedItemsOptions:
    return LinkedItemsOptions(is_enabled=args.linked_wi_types != 'none', linked_wi_types=args.linked_wi_types, linked_wi_relationship=args.linked_wi_relationship)


def _repository_identity(clients: Clients, repo_id: str):
    """Return (api_url, project_name) of a repository, or None when it cannot be fetched."""
    try:
        repo = clients.git.get_repository(repo_id) or {}
    except FetchError as ex:
        logger.error(f"could not fetch repository {repo_id}: {ex}")
        return None
    api_url = repo.get('url') or f"{clients.git.org_url}_apis/git/repositories/{repo_id}"
    return api_url, (repo.get('project') or {}).get('name')


def _refs_exist(clients: Clients, repo_api_url: str, versions) -> bool:
    """Tags and branches must exist before they are diffed; commits are taken as given."""
    lookups = {'tag': clients.git.get_tag, 'branch': clients.git.get_branch}
    for version in versions:
        lookup = lookups.get(version.version_type)
        if lookup is None:
            continue
        try:
            found = lookup(repo_api_url, version.version)
        except FetchError as ex:
            logger.error(f"could not look up {version.version_type} {version.version}: {ex}")
            return False
        if found is None:
            logger.error(f"{version.version_type} {version.version} not found in {repo_api_url}")
            return False
    return True


def _fetch_commits(clients: Clients, args, repo_project: str, repo_id: str, repo_api_url: str, target_version: VersionDescriptor, source_version: VersionDescriptor):
    if not args.direct_range:
        return get_commit_batch(clients.git, repo_api_url, target_version, source_version, args.path or '')
    try:
        return get_commit_range(clients.git, repo_project, repo_id, source_version.version, target_version.version)
    except FetchError as ex:
        logger.error(f"could not fetch commits between {source_version.version} and {target_version.version}: {ex}")
        return None


def _collect(clients: Clients, args, repo_id: str, target_version: VersionDescriptor, source_version: VersionDescriptor):
    """Commits, change set and submodules between two versions of one repository.

    Returns None when the repository, its refs or its commits cannot be fetched.
    """
    identity = _repository_identity(clients, repo_id)
    if identity is None:
        return None
    repo_api_url, repo_project = identity
    repo_project = repo_project or args.project
    if not _refs_exist(clients, repo_api_url, (source_version, target_version)):
        return None
    commits = _fetch_commits(clients, args, repo_project, repo_id, repo_api_url, target_version, source_version)
    if commits is None:
        return None
    if commits:
        aggregator = ChangeSetAggregator(clients.git, clients.tickets)
        result = aggregator.get_items_in_commit_range(repo_project, repo_id, commits, _linked_options(args), args.include_unlinked)
    else:
        logger.warning(f"no commits between {source_version.version} and {target_version.version}")
        result = ChangeSetResult()
    submodules = get_submodules_data(clients.git, repo_project, repo_id, target_version, source_version, commits)
    return result, submodules


def _fetch_run(clients: Clients, args, run_id: int):
    try:
        return normalize_pipeline_run(clients.pipelines.get_run(args.project, args.pipeline_id, run_id))
    except FetchError as ex:
        logger.error(f"could not fetch run {run_id} of pipeline {args.pipeline_id}: {ex}")
        return None


def run_pipeline_range(args, clients: Clients):
    """Change set between a pipeline run and its previous comparable run.

    Returns None when the runs cannot be fetched or no previous run could be determined.
    """
    target = _fetch_run(clients, args, args.run_id)
    if target is None:
        return None
    if target.repository is None:
        logger.error(f"run {args.run_id} has no primary repository resource")
        return None

    from_run_id = args.from_run_id
    if from_run_id is None:
        resolver = PipelineLineageResolver(clients.pipelines)
        from_run_id = resolver.find_previous_pipeline(args.project, args.pipeline_id, args.run_id, target, args.different_commit, args.from_stage or '')
    if from_run_id is None:
        logger.error(f"could not find a previous run for run {args.run_id}")
        return None
    logger.info(f"diffing run {from_run_id} -> {args.run_id}")

    source = _fetch_run(clients, args, from_run_id)
    if source is None:
        return None
    if source.repository is None:
        logger.error(f"run {from_run_id} has no primary repository resource")
        return None

    target_version = VersionDescriptor(target.repository.version, 'commit')
    source_version = VersionDescriptor(source.repository.version, 'commit')
    collected = _collect(clients, args, target.repository.repository_id, target_version, source_version)
    if collected is None:
        return None
    result, submodules = collected

    graph = ResourceGraphResolver(clients.pipelines, clients.git)
    repositories = graph.get_resource_repositories(target)
    pipelines = graph.get_resource_pipelines(target)
    scope = f"{args.pipeline_id}: run {from_run_id} to {args.run_id}"
    return result, submodules, repositories, pipelines, scope


def run_version_range(args, clients: Clients):
    """Change set between two explicit versions of a repository."""
    target_version = VersionDescriptor(args.to_version, args.version_type)
    source_version = VersionDescriptor(args.from_version, args.version_type)
    collected = _collect(clients, args, args.repo, target_version, source_version)
    if collected is None:
        return None
    result, submodules = collected
    scope = f"{args.repo}: {args.from_version} to {args.to_version}"
    return result, submodules, None, None, scope


def write_output(fmt: str, rendered: str, args):
    """Write output to file or stdout."""
    if not args.out_file.strip():
        print(rendered)
        return
    out_path = args.out_file.strip()
    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(out_path, 'w', encoding='utf-8', newline='') as fh:
        fh.write(rendered)
    print(f"Wrote {fmt} report to {out_path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Azure DevOps change-set CLI")
    parser.add_argument("--org-url", type=str, default="", help="Organization URL (overrides ADO_ORG_URL env)")
    parser.add_argument("--token", type=str, default="", help="Personal access token (overrides ADO_TOKEN env)")
    parser.add_argument("--project", type=str, required=True, help="Team project name")
    parser.add_argument("--pipeline-id", type=int, help="Pipeline definition id")
    parser.add_argument("--run-id", type=int, help="Target pipeline run id")
    parser.add_argument("--from-run-id", type=int, default=None, help="Use this run as the previous run instead of searching history")
    parser.add_argument("--from-stage", type=str, default="", help="Only accept previous runs whose stage of this name succeeded")
    parser.add_argument("--different-commit", action="store_true", help="Require the previous run to be built from a different commit")
    parser.add_argument("--repo", type=str, default="", help="Repository id (with --from-version/--to-version)")
    parser.add_argument("--from-version", type=str, default="", help="Source version of the repository")
    parser.add_argument("--to-version", type=str, default="", help="Target version of the repository")
    parser.add_argument("--version-type", type=str, choices=VERSION_TYPES, default="commit", help="Type of --from-version/--to-version")
    parser.add_argument("--path", type=str, default="", help="Only consider commits touching this path")
    parser.add_argument("--direct-range", action="store_true", help="Fetch commits between two commit SHAs with the commits endpoint instead of paging commitsbatch")
    parser.add_argument("--include-unlinked", action="store_true", help="List commits without linked work items")
    parser.add_argument("--linked-wi-types", type=str, choices=LINKED_WI_TYPES, default="none", help="Expand related work items of these types")
    parser.add_argument("--linked-wi-relationship", type=str, choices=LINKED_WI_RELATIONSHIPS, default="both", help="Relationship filter for related work items")
    parser.add_argument("--output", type=str, choices=("json", "md", "csv"), default="json", help="Output format")
    parser.add_argument("--out-file", type=str, default="", help="Output file path. If omitted the report goes to stdout")
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    # retry/backoff knobs: optional CLI overrides. Environment variables CHANGESET_MAX_RETRIES, CHANGESET_BACKOFF_BASE,
    # CHANGESET_BACKOFF_JITTER, CHANGESET_MAX_BACKOFF may also be used to set defaults.
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum retry attempts for HTTP requests (overrides CHANGESET_MAX_RETRIES env)")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds (overrides CHANGESET_BACKOFF_BASE env)")
    parser.add_argument("--backoff-jitter", type=float, default=None, help="Jitter seconds added to backoff (overrides CHANGESET_BACKOFF_JITTER env)")
    parser.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds (overrides CHANGESET_MAX_BACKOFF env)")
    return parser


def _validate_mode(args, parser):
    version_mode = bool(args.from_version or args.to_version)
    if version_mode:
        if not (args.repo and args.from_version and args.to_version):
            parser.error('--repo, --from-version and --to-version must be given together')
        if args.direct_range and args.version_type != 'commit':
            parser.error('--direct-range needs --version-type commit')
        return 'versions'
    if args.pipeline_id is None or args.run_id is None:
        parser.error('either --pipeline-id with --run-id, or --repo with --from-version/--to-version is required')
    return 'pipeline'


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # CLI flags take precedence over environment variables
    configure_retry(max_retries=args.max_retries, backoff_base=args.backoff_base, backoff_jitter=args.backoff_jitter, max_backoff=args.max_backoff)
    _resolve_connection(args, parser)
    mode = _validate_mode(args, parser)

    clients = Clients(args.org_url, args.token)
    outcome = run_version_range(args, clients) if mode == 'versions' else run_pipeline_range(args, clients)
    if outcome is None:
        print("Could not compute the change set; see the log for details.")
        return 1

    result, submodules, repositories, pipelines, scope = outcome
    fmt = args.output.lower()
    rendered = render(
        result,
        fmt=fmt,
        submodules=submodules,
        repositories=repositories,
        pipelines=pipelines,
        generated_at=datetime.now(timezone.utc).isoformat(),
        scope=scope,
    )
    write_output(fmt, rendered, args)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
