import unittest
from unittest.mock import Mock

from ingest.client import FetchError
from ingest.commits import get_commit_batch, get_commit_range, build_batch_body, PAGE_SIZE
from normalize.models import VersionDescriptor


def _commit(i):
    return {'commitId': f"c{i}", 'committer': {'name': f"dev{i}", 'date': f"2024-01-{i:02d}T08:00:00Z"}, 'comment': f"m{i}"}


def _page(ids):
    return {'count': len(ids), 'value': [_commit(i) for i in ids]}


class TestCommitBatch(unittest.TestCase):
    def setUp(self):
        self.to_v = VersionDescriptor('t', 'commit')
        self.from_v = VersionDescriptor('f', 'commit')

    def test_pages_until_zero_count_and_keeps_order(self):
        git = Mock()
        git.get_commits_batch_page.side_effect = [_page([1, 2]), _page([3]), {'count': 0, 'value': []}]
        commits = get_commit_batch(git, 'https://api/repo', self.to_v, self.from_v)
        self.assertEqual([c.commit_id for c in commits], ['c1', 'c2', 'c3'])
        self.assertEqual(commits[2].commit_date, '2024-01-03')
        self.assertEqual(commits[0].committer_name, 'dev1')
        skips = [call[0][2] for call in git.get_commits_batch_page.call_args_list]
        self.assertEqual(skips, [0, PAGE_SIZE, 2 * PAGE_SIZE])

    def test_path_filter_uses_full_history(self):
        body = build_batch_body(self.to_v, self.from_v, 'src/app')
        self.assertEqual(body['itemPath'], 'src/app')
        self.assertEqual(body['historyMode'], 'fullHistory')
        self.assertTrue(body['includeWorkItems'])
        self.assertNotIn('itemPath', build_batch_body(self.to_v, self.from_v))

    def test_page_error_returns_partial_list(self):
        git = Mock()
        git.get_commits_batch_page.side_effect = [_page([1]), FetchError('u', 500)]
        commits = get_commit_batch(git, 'https://api/repo', self.to_v, self.from_v)
        self.assertEqual([c.commit_id for c in commits], ['c1'])

    def test_page_cap_stops_runaway_server(self):
        git = Mock()
        git.get_commits_batch_page.return_value = _page([1])
        commits = get_commit_batch(git, 'https://api/repo', self.to_v, self.from_v, max_pages=3)
        self.assertEqual(len(commits), 3)
        self.assertEqual(git.get_commits_batch_page.call_count, 3)


class TestCommitRange(unittest.TestCase):
    def test_commits_are_normalized(self):
        git = Mock()
        git.get_commits_in_commit_range.return_value = [_commit(2), _commit(1)]
        commits = get_commit_range(git, 'proj', 'r1', 'from', 'to')
        self.assertEqual([c.commit_id for c in commits], ['c2', 'c1'])
        git.get_commits_in_commit_range.assert_called_once_with('proj', 'r1', 'from', 'to')

    def test_fetch_error_propagates(self):
        git = Mock()
        git.get_commits_in_commit_range.side_effect = FetchError('u', 500)
        with self.assertRaises(FetchError):
            get_commit_range(git, 'proj', 'r1', 'from', 'to')


if __name__ == '__main__':
    unittest.main()
