import csv
import io
import json
import unittest

from correlate.models import ChangeSet, ChangeSetResult, LinkedRelation, UnlinkedCommit
from normalize.models import Submodule, ResourceRepository, ResourcePipeline
from normalize.util import normalize_commit, normalize_pull_request
from report.renderer import render


def _result():
    commit = normalize_commit({'commitId': 'abcdef123456', 'committer': {'name': 'Dana', 'date': '2024-05-01T10:00:00Z'}, 'workItems': [{'id': 1}]})
    pr = normalize_pull_request({'pullRequestId': 9, 'createdBy': {'displayName': 'Lee'}, 'closedDate': '2024-05-02T00:00:00Z', 'lastMergeCommit': {'commitId': 'm'}})
    return ChangeSetResult(
        [
            ChangeSet({'id': 1, 'fields': {'System.Title': 'Login fails', 'System.WorkItemType': 'Bug'}}, commit=commit,
                      linked_items=[LinkedRelation(10, 'Requirement', 'Auth', 'https://web/10', 'Affects')]),
            ChangeSet({'id': 2, 'fields': {'System.Title': 'Add export', 'System.WorkItemType': 'Task'}}, pullrequest=pr, pull_request_work_item_only=True),
        ],
        [UnlinkedCommit('fedcba987654', '2024-05-03T00:00:00Z', 'Sam', 'tidy up', 'https://web/c')],
    )


class TestRenderer(unittest.TestCase):
    def test_json_includes_enrichment(self):
        data = json.loads(render(_result(), fmt='json', submodules=[Submodule('libs_x', 'u', 'x', 'a', 'b')], repositories=[ResourceRepository('r', 's', 'u')]))
        self.assertEqual([c['workItem']['id'] for c in data['commitChangesArray']], [1, 2])
        self.assertTrue(data['commitChangesArray'][1]['pullRequestWorkItemOnly'])
        self.assertEqual(data['commitChangesArray'][0]['linkedItems'][0]['id'], 10)
        self.assertEqual(data['commitsWithNoRelations'][0]['commitId'], 'fedcba987654')
        self.assertEqual(data['submodules'][0]['gitSubModuleName'], 'libs_x')
        self.assertEqual(data['resourceRepositories'][0]['repoName'], 'r')
        self.assertNotIn('resourcePipelines', data)

    def test_csv_rows(self):
        rows = list(csv.reader(io.StringIO(render(_result(), fmt='csv'))))
        self.assertEqual(rows[0][0], 'work_item_id')
        self.assertEqual(rows[1][:7], ['1', 'Bug', 'Login fails', 'commit', 'abcdef123456', 'Dana', '2024-05-01'])
        self.assertEqual(rows[1][8], '10')
        self.assertEqual(rows[2][3:8], ['pullrequest', '9', 'Lee', '2024-05-02', 'yes'])

    def test_markdown_template(self):
        md = render(
            _result(),
            fmt='md',
            submodules=[Submodule('libs_x', 'u', 'x', 'aaaaaaaaaa', 'bbbbbbbbbb')],
            pipelines=[ResourcePipeline('up', 5, 4, '1.0', 'Proj', 'TfsGit')],
            scope='run 1 to run 2',
        )
        self.assertIn('# Change Set: run 1 to run 2', md)
        self.assertIn('Login fails', md)
        self.assertIn('(PR only)', md)
        self.assertIn('Commits Without Work Items (1)', md)
        self.assertIn('`fedcba98`', md)
        self.assertIn('**libs_x**', md)
        self.assertIn('build 1.0', md)

    def test_empty_result(self):
        self.assertIn('No work items in range', render(None, fmt='md'))
        self.assertEqual(json.loads(render(None)), {'commitChangesArray': [], 'commitsWithNoRelations': []})


if __name__ == '__main__':
    unittest.main()
