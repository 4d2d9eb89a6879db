"""
Data models for change-set aggregation results.
"""
from typing import List, Optional, Dict, Any

from normalize.models import Commit, PullRequest

LINKED_WI_TYPES = ('reqOnly', 'featureOnly', 'both', 'none')
LINKED_WI_RELATIONSHIPS = ('affectsOnly', 'coversOnly', 'both')


class LinkedItemsOptions:
    """
    Controls expansion of each work item's related-item graph.
    """

    def __init__(self, is_enabled: bool = False, linked_wi_types: str = 'none', linked_wi_relationship: str = 'both'):
        if linked_wi_types not in LINKED_WI_TYPES:
            raise ValueError(f"linked_wi_types must be one of {LINKED_WI_TYPES}")
        if linked_wi_relationship not in LINKED_WI_RELATIONSHIPS:
            raise ValueError(f"linked_wi_relationship must be one of {LINKED_WI_RELATIONSHIPS}")
        self.is_enabled = is_enabled
        self.linked_wi_types = linked_wi_types
        self.linked_wi_relationship = linked_wi_relationship

    @property
    def active(self) -> bool:
        return self.is_enabled and self.linked_wi_types != 'none'


class LinkedRelation:
    def __init__(self, id, wi_type: str, title: str, url: str, relation_type: str):
        self.id = id
        self.wi_type = wi_type
        self.title = title
        self.url = url
        self.relation_type = relation_type

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'wiType': self.wi_type, 'title': self.title, 'url': self.url, 'relationType': self.relation_type}


class ChangeSet:
    """
    One work item and the commit or pull request that introduced it.
    """

    def __init__(self, work_item: Dict[str, Any], commit: Optional[Commit] = None, pullrequest: Optional[PullRequest] = None, target_repo: Optional[Dict[str, Any]] = None, linked_items: Optional[List[LinkedRelation]] = None, pull_request_work_item_only: bool = False):
        self.work_item = work_item
        self.commit = commit
        self.pullrequest = pullrequest
        self.target_repo = target_repo
        self.linked_items = linked_items or []
        self.pull_request_work_item_only = pull_request_work_item_only

    @property
    def work_item_id(self):
        return (self.work_item or {}).get('id')

    @property
    def title(self) -> str:
        return ((self.work_item or {}).get('fields') or {}).get('System.Title') or ''

    @property
    def work_item_type(self) -> str:
        return ((self.work_item or {}).get('fields') or {}).get('System.WorkItemType') or ''

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'workItem': self.work_item}
        if self.commit is not None:
            data['commit'] = self.commit.to_dict()
        if self.pullrequest is not None:
            data['pullrequest'] = self.pullrequest.to_dict()
        if self.target_repo is not None:
            data['targetRepo'] = self.target_repo
        data['linkedItems'] = [li.to_dict() for li in self.linked_items]
        if self.pull_request_work_item_only:
            data['pullRequestWorkItemOnly'] = True
        return data


class UnlinkedCommit:
    """
    A commit that reached the range without any traceable work item.
    """

    def __init__(self, commit_id: str, commit_date: str, committer: str, comment: str, url: Optional[str]):
        self.commit_id = commit_id
        self.commit_date = commit_date
        self.committer = committer
        self.comment = comment
        self.url = url

    @classmethod
    def from_commit(cls, commit: Commit) -> 'UnlinkedCommit':
        return cls(commit.commit_id, commit.committer_date, commit.committer_name, commit.comment, commit.remote_url)

    def to_dict(self) -> Dict[str, Any]:
        return {'commitId': self.commit_id, 'commitDate': self.commit_date, 'committer': self.committer, 'comment': self.comment, 'url': self.url}


class ChangeSetResult:
    def __init__(self, commit_changes: Optional[List[ChangeSet]] = None, commits_with_no_relations: Optional[List[UnlinkedCommit]] = None):
        self.commit_changes = commit_changes or []
        self.commits_with_no_relations = commits_with_no_relations or []

    def work_item_ids(self) -> List[Any]:
        return [cs.work_item_id for cs in self.commit_changes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'commitChangesArray': [cs.to_dict() for cs in self.commit_changes],
            'commitsWithNoRelations': [c.to_dict() for c in self.commits_with_no_relations],
        }
