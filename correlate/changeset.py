"""
Change-set aggregation.

Merges the work items linked to commits of a range with the work items linked to the pull
requests merged in that range, keeps the first occurrence of every work item id and optionally
reports the commits that carry no traceable work item.
"""
import logging
from typing import List, Dict, Any, Optional, Iterable, Set, Tuple

from correlate.linker import build_linked_items
from correlate.models import ChangeSet, ChangeSetResult, LinkedItemsOptions, UnlinkedCommit
from ingest.client import run_concurrently, DEFAULT_MAX_WORKERS
from normalize.models import Commit, ExtendedCommit, PullRequest
from normalize.util import normalize_commit, normalize_pull_request

logger = logging.getLogger(__name__)


def as_commits(items: Iterable[Any]) -> List[Commit]:
    """Accept Commit, ExtendedCommit or raw commit dicts and return plain Commits."""
    commits = []
    for item in items or []:
        if isinstance(item, ExtendedCommit):
            commits.append(item.commit)
        elif isinstance(item, Commit):
            commits.append(item)
        elif isinstance(item, dict):
            commits.append(normalize_commit(item.get('commit') if isinstance(item.get('commit'), dict) else item))
    return commits


def dedup_by_work_item(change_sets: List[ChangeSet], seen: Optional[Set[Any]] = None) -> List[ChangeSet]:
    """Keep the first change set of every work item id, in input order."""
    seen = set() if seen is None else seen
    kept = []
    for cs in change_sets:
        wid = cs.work_item_id
        if wid in seen:
            continue
        seen.add(wid)
        kept.append(cs)
    return kept


class ChangeSetAggregator:
    """Builds change sets from commits and pull requests of one repository."""

    def __init__(self, git, tickets, max_workers: int = DEFAULT_MAX_WORKERS):
        self.git = git
        self.tickets = tickets
        self.max_workers = max_workers

    def _resolve(self, project: str, work_item_id) -> Optional[Dict[str, Any]]:
        try:
            return self.tickets.get_work_item(project, work_item_id)
        except Exception as ex:
            logger.warning(f"could not resolve work item {work_item_id}: {ex}")
            return None

    def _commit_change_sets(self, project: str, commits: List[Commit], target_repo: Optional[Dict[str, Any]] = None) -> List[ChangeSet]:
        pairs: List[Tuple[Commit, Any]] = [(c, wid) for c in commits for wid in c.work_item_ids]
        items = run_concurrently(lambda pair: self._resolve(project, pair[1]), pairs, self.max_workers)
        return [
            ChangeSet(work_item=wi, commit=commit, target_repo=target_repo)
            for (commit, _), wi in zip(pairs, items)
            if wi is not None
        ]

    def _pull_requests_in_range(self, project: str, repo_id: str, commits: List[Commit]) -> List[PullRequest]:
        commit_ids = {c.commit_id for c in commits}
        prs = [normalize_pull_request(raw) for raw in self.git.get_completed_pull_requests(project, repo_id)]
        matched = [pr for pr in prs if pr.last_merge_commit_id in commit_ids]
        logger.info(f"filtered in commit range {len(matched)} pullrequests for repo: {repo_id}")
        return matched

    def _pull_request_items(self, project: str, pr: PullRequest) -> List[ChangeSet]:
        if not pr.work_items_href:
            return []
        try:
            refs = self.git.get_pull_request_work_item_refs(pr.work_items_href)
            logger.info(f"got {len(refs)} items linked to pr {pr.pull_request_id}")
            items = run_concurrently(lambda ref: self.tickets.get_work_item(project, ref.get('id')), refs, self.max_workers)
        except Exception as ex:
            logger.error(f"could not resolve work items of pull request {pr.pull_request_id}: {ex}")
            return []
        return [ChangeSet(work_item=wi, pullrequest=pr) for wi in items if wi]

    def _pull_request_change_sets(self, project: str, prs: List[PullRequest]) -> List[ChangeSet]:
        per_pr = run_concurrently(lambda pr: self._pull_request_items(project, pr), prs, self.max_workers)
        return [cs for group in per_pr for cs in group]

    def _expand_linked_items(self, change_sets: List[ChangeSet], options: Optional[LinkedItemsOptions]):
        if options is None or not options.active:
            return
        linked = run_concurrently(lambda cs: build_linked_items(self.tickets, options, cs.work_item), change_sets, self.max_workers)
        for cs, items in zip(change_sets, linked):
            cs.linked_items = items

    def get_pull_requests_linked_items_in_commit_range(self, project: str, repo_id: str, commits) -> List[ChangeSet]:
        """Change sets for the work items linked to pull requests merged by one of the commits."""
        prs = self._pull_requests_in_range(project, repo_id, as_commits(commits))
        return self._pull_request_change_sets(project, prs)

    def get_items_in_commit_range(self, project: str, repo_id: str, commits, linked_options: Optional[LinkedItemsOptions] = None, include_unlinked: bool = False) -> ChangeSetResult:
        """Aggregate commit-linked and pull-request-linked work items of a commit range.

        Commit entries come first, pull request entries after; the first occurrence of every
        work item id is kept. An entry is flagged pull_request_work_item_only when its work item
        reached the range through a pull request and through no commit other than a merge commit.
        An empty commit list or a failed pull request listing yields an empty result.
        """
        try:
            commit_list = as_commits(commits)
            if not commit_list:
                raise ValueError('commit range cannot be empty')
            logger.info(f"get_items_in_commit_range: include_unlinked={include_unlinked}, commits={len(commit_list)}")

            commit_changes = self._commit_change_sets(project, commit_list)
            prs = self._pull_requests_in_range(project, repo_id, commit_list)
            pr_changes = self._pull_request_change_sets(project, prs)
            logger.info(f"got {len(pr_changes)} items from pr's and {len(commit_changes)} items from commits")
        except Exception as ex:
            logger.error(f"get_items_in_commit_range failed for repo {repo_id}: {ex}")
            return ChangeSetResult()

        merge_commit_ids = {pr.last_merge_commit_id for pr in prs}
        via_feature_commit = {cs.work_item_id for cs in commit_changes if cs.commit.commit_id not in merge_commit_ids}
        via_pull_request = {cs.work_item_id for cs in pr_changes}

        merged = dedup_by_work_item(commit_changes + pr_changes)
        for cs in merged:
            if cs.work_item_id in via_pull_request and cs.work_item_id not in via_feature_commit:
                cs.pull_request_work_item_only = True
        self._expand_linked_items(merged, linked_options)

        unlinked: List[UnlinkedCommit] = []
        if include_unlinked:
            covered = {pr.last_merge_commit_id for pr in prs if any(cs.pullrequest is pr for cs in pr_changes)}
            unlinked = [UnlinkedCommit.from_commit(c) for c in commit_list if not c.has_work_items and c.commit_id not in covered]
        logger.info(f"get_items_in_commit_range: produced {len(merged)} linked changes and {len(unlinked)} unlinked commits")
        return ChangeSetResult(merged, unlinked)

    def get_items_in_pull_request_range(self, project: str, repo_id: str, pull_request_ids: Iterable[Any], linked_options: Optional[LinkedItemsOptions] = None) -> ChangeSetResult:
        """Aggregate the work items linked to an explicit list of pull requests."""
        wanted = {str(pid) for pid in pull_request_ids or []}
        try:
            if not wanted:
                raise ValueError('pull request id list cannot be empty')
            prs = [normalize_pull_request(raw) for raw in self.git.get_completed_pull_requests(project, repo_id)]
        except Exception as ex:
            logger.error(f"get_items_in_pull_request_range failed for repo {repo_id}: {ex}")
            return ChangeSetResult()
        matched = [pr for pr in prs if str(pr.pull_request_id) in wanted]
        logger.info(f"filtered in prId range {len(matched)} pullrequests for repo: {repo_id}")
        merged = dedup_by_work_item(self._pull_request_change_sets(project, matched))
        for cs in merged:
            cs.pull_request_work_item_only = True
        self._expand_linked_items(merged, linked_options)
        return ChangeSetResult(merged)

    def _resolve_target_repo(self, team_project: str, target_repo: Dict[str, Any]) -> Dict[str, Any]:
        repo = dict(target_repo or {})
        repo.setdefault('projectId', team_project)
        if not repo.get('url'):
            return repo
        data = self.git.get_repository_by_url(repo['url']) or {}
        web_url = ((data.get('_links') or {}).get('web') or {}).get('href')
        if web_url:
            repo['url'] = web_url
            repo['projectId'] = (data.get('project') or {}).get('id') or team_project
        return repo

    def get_items_for_pipeline_range(self, team_project: str, extended_commits, target_repo: Dict[str, Any], added_work_item_ids: Set[Any], linked_options: Optional[LinkedItemsOptions] = None, include_unlinked: bool = False) -> ChangeSetResult:
        """Change sets for commits of one repository taking part in a pipeline range.

        added_work_item_ids belongs to the caller and is shared across repositories, so a work
        item reported for one repository is not reported again for the next.
        """
        try:
            commit_list = as_commits(extended_commits)
            if not commit_list:
                raise ValueError('extended commits cannot be empty')
            logger.debug(f"get_items_for_pipeline_range: {len(commit_list)} commits for {target_repo}")
            repo = self._resolve_target_repo(team_project, target_repo)
            changes = self._commit_change_sets(repo['projectId'], commit_list, target_repo=repo)
        except Exception as ex:
            logger.error(f"get_items_for_pipeline_range failed: {ex}")
            return ChangeSetResult()

        merged = dedup_by_work_item(changes, seen=added_work_item_ids)
        self._expand_linked_items(merged, linked_options)
        unlinked = [UnlinkedCommit.from_commit(c) for c in commit_list if not c.has_work_items] if include_unlinked else []
        logger.info(f"get_items_for_pipeline_range: produced {len(merged)} linked changes and {len(unlinked)} unlinked commits")
        return ChangeSetResult(merged, unlinked)

    def get_pull_requests_in_commit_range_without_linked_items(self, project: str, repo_id: str, commits) -> List[Dict[str, Any]]:
        """Summaries of the pull requests merged in a commit range, without their work items."""
        org_name = [p for p in self.git.org_url.split('/') if p][-1]
        prs = self._pull_requests_in_range(project, repo_id, as_commits(commits))
        return [
            {
                'pullRequestId': pr.pull_request_id,
                'createdBy': pr.created_by,
                'creationDate': pr.creation_date,
                'closedDate': pr.closed_date,
                'title': pr.title,
                'description': pr.description,
                'url': f"https://dev.azure.com/{org_name}/{project}/_git/{repo_id}/pullrequest/{pr.pull_request_id}",
            }
            for pr in prs
        ]
