import time
import unittest
from unittest.mock import Mock

from ingest.client import FetchError, run_concurrently
from lineage.resources import ResourceGraphResolver, is_acceptable_build, direct_build, build_by_number
from normalize.models import PipelineResourceRef

PROJECT_GUID = '0b6c1f2e-aaaa-bbbb-cccc-1234567890ab'


def _build(build_id, number='1.0', definition_id=4, definition_name='upstream', project='Proj', def_type='build', provider='TfsGit'):
    return {
        'id': build_id,
        'buildNumber': number,
        'definition': {'id': definition_id, 'name': definition_name, 'type': def_type},
        'project': {'name': project},
        'repository': {'type': provider},
    }


def _run_with_pipelines(pipelines):
    return {'id': 100, 'result': 'succeeded', 'resources': {'pipelines': pipelines}}


class TestResourceRepositories(unittest.TestCase):
    def test_only_hosted_git_repositories_deduplicated(self):
        git = Mock()
        git.get_repository.side_effect = lambda repo_id: {'name': f"name-{repo_id}", 'url': f"https://api/{repo_id}"}
        run = {'id': 1, 'resources': {'repositories': {
            'self': {'repository': {'id': 'r1', 'type': 'azureReposGit'}, 'version': 'sha1'},
            'dup': {'repository': {'id': 'r1', 'type': 'azureReposGit'}, 'version': 'sha1'},
            'gh': {'repository': {'id': 'x/y', 'type': 'gitHub'}, 'version': 'sha2'},
            'tools': {'repository': {'id': 'r2', 'type': 'azureReposGit'}, 'version': 'sha3'},
        }}}
        repos = ResourceGraphResolver(Mock(), git).get_resource_repositories(run)
        self.assertEqual([r.to_dict() for r in repos], [
            {'repoName': 'name-r1', 'repoSha1': 'sha1', 'url': 'https://api/r1'},
            {'repoName': 'name-r2', 'repoSha1': 'sha3', 'url': 'https://api/r2'},
        ])

    def test_failed_repository_lookup_is_isolated(self):
        git = Mock()

        def lookup(repo_id):
            if repo_id == 'bad':
                raise FetchError('u', 404)
            return {'name': 'good', 'url': 'https://api/good'}
        git.get_repository.side_effect = lookup
        run = {'id': 1, 'resources': {'repositories': {
            'a': {'repository': {'id': 'bad', 'type': 'azureReposGit'}, 'version': 's'},
            'b': {'repository': {'id': 'ok', 'type': 'azureReposGit'}, 'version': 's'},
        }}}
        repos = ResourceGraphResolver(Mock(), git).get_resource_repositories(run)
        self.assertEqual([r.repo_name for r in repos], ['good'])


class TestResourcePipelines(unittest.TestCase):
    def setUp(self):
        self.pipelines = Mock()
        self.pipelines.find_builds.return_value = []
        self.pipelines.get_run_history.return_value = []
        self.resolver = ResourceGraphResolver(self.pipelines, Mock())

    def test_direct_lookup_by_pipeline_url(self):
        self.pipelines.get_build_by_url.return_value = _build(77)
        run = _run_with_pipelines({'up': {'pipeline': {'id': 77, 'url': 'https://dev.azure.com/org/Proj/_apis/pipelines/77?revision=3'}}})
        result = self.resolver.get_resource_pipelines(run)
        self.pipelines.get_build_by_url.assert_called_once_with('https://dev.azure.com/org/Proj/_apis/build/builds/77')
        self.assertEqual([p.to_dict() for p in result], [
            {'name': 'up', 'buildId': 77, 'definitionId': 4, 'buildNumber': '1.0', 'teamProject': 'Proj', 'provider': 'TfsGit'},
        ])

    def test_direct_lookup_by_run_id(self):
        self.pipelines.get_build.return_value = _build(90)
        ref = PipelineResourceRef('up', 4, url='https://d/org/Proj/_apis/pipelines/4', version='1.0', run_id=90)
        self.assertEqual(self.resolver.resolve_build(ref)['id'], 90)
        self.pipelines.get_build.assert_called_once_with('Proj', 90)
        self.pipelines.find_builds.assert_not_called()

    def test_definition_and_build_number_with_normalized_branch(self):
        self.pipelines.find_builds.return_value = [_build(5, number='1.0.1'), _build(6, number='1.0')]
        ref = PipelineResourceRef('up', 4, url='https://d/org/Proj/_apis/pipelines/4', version='1.0', branch='main')
        self.assertEqual(self.resolver.resolve_build(ref)['id'], 6)
        self.pipelines.find_builds.assert_called_once_with('Proj', '1.0', definition_id=4, branch='refs/heads/main')

    def test_build_number_only_prefers_matching_definition_name(self):
        def find(project, number, definition_id=None, branch=None):
            if definition_id is not None:
                return []
            return [_build(7, definition_name='someone-else'), _build(8, definition_name='upstream')]
        self.pipelines.find_builds.side_effect = find
        ref = PipelineResourceRef('up', 4, url='https://d/org/Proj/_apis/pipelines/4', pipeline_name='upstream', version='1.0')
        self.assertEqual(self.resolver.resolve_build(ref)['id'], 8)

    def test_run_history_fallback(self):
        self.pipelines.get_run_history.return_value = [
            {'id': 30, 'name': '1.0', 'result': 'partiallySucceeded'},
            {'id': 31, 'name': '1.0', 'result': 'succeeded'},
        ]
        self.pipelines.get_build.return_value = _build(31)
        ref = PipelineResourceRef('up', 4, url='https://d/org/Proj/_apis/pipelines/4', version='1.0')
        self.assertEqual(self.resolver.resolve_build(ref)['id'], 31)
        self.pipelines.get_build.assert_called_once_with('Proj', 31)

    def test_strategy_error_moves_to_next_strategy(self):
        self.pipelines.find_builds.side_effect = [FetchError('u', 500), [_build(9)]]
        ref = PipelineResourceRef('up', 4, url='https://d/org/Proj/_apis/pipelines/4', version='1.0')
        self.assertEqual(self.resolver.resolve_build(ref)['id'], 9)

    def test_unacceptable_builds_are_rejected(self):
        self.assertFalse(is_acceptable_build(_build(1, def_type='xaml')))
        self.assertFalse(is_acceptable_build(_build(1, provider='GitHub')))
        self.assertFalse(is_acceptable_build(None))
        self.pipelines.get_build_by_url.return_value = _build(1, provider='GitHub')
        run = _run_with_pipelines({'up': {'pipeline': {'id': 1, 'url': 'https://d/org/Proj/_apis/pipelines/1'}}})
        self.assertEqual(self.resolver.get_resource_pipelines(run), [])

    def test_one_failing_pipeline_does_not_abort_others(self):
        def by_url(url):
            if url.endswith('/1'):
                raise FetchError(url, 500)
            return _build(2)
        self.pipelines.get_build_by_url.side_effect = by_url
        run = _run_with_pipelines({
            'broken': {'pipeline': {'id': 1, 'url': 'https://d/org/Proj/_apis/pipelines/1'}},
            'fine': {'pipeline': {'id': 2, 'url': 'https://d/org/Proj/_apis/pipelines/2'}},
            'fine-again': {'pipeline': {'id': 2, 'url': 'https://d/org/Proj/_apis/pipelines/2'}},
        })
        names = [p.name for p in self.resolver.get_resource_pipelines(run)]
        self.assertEqual(names, ['fine', 'fine-again'])

    def test_duplicate_resolutions_collapse(self):
        self.pipelines.get_build_by_url.return_value = _build(2)
        resolver = self.resolver
        ref_run = _run_with_pipelines({'up': {'pipeline': {'id': 2, 'url': 'https://d/org/Proj/_apis/pipelines/2'}}})
        first = resolver.get_resource_pipelines(ref_run)
        self.assertEqual(len(first), 1)
        self.assertEqual(first[0], resolver.get_resource_pipelines(ref_run)[0])

    def test_project_guid_is_resolved_once(self):
        self.pipelines.get_project.return_value = {'name': 'Readable'}
        self.assertEqual(self.resolver.project_name(PROJECT_GUID), 'Readable')
        self.assertEqual(self.resolver.project_name(PROJECT_GUID), 'Readable')
        self.pipelines.get_project.assert_called_once_with(PROJECT_GUID)
        self.assertEqual(self.resolver.project_name('Plain'), 'Plain')

    def test_project_guid_resolved_once_across_worker_threads(self):
        def slow_project(project_id):
            time.sleep(0.01)
            return {'name': 'Readable'}
        self.pipelines.get_project.side_effect = slow_project
        names = run_concurrently(self.resolver.project_name, [PROJECT_GUID] * 8)
        self.assertEqual(names, ['Readable'] * 8)
        self.pipelines.get_project.assert_called_once_with(PROJECT_GUID)

    def test_project_guid_failure_falls_back_to_id(self):
        self.pipelines.get_project.side_effect = FetchError('u', 404)
        self.assertEqual(self.resolver.project_name(PROJECT_GUID), PROJECT_GUID)

    def test_guid_project_in_url_is_normalized_before_queries(self):
        self.pipelines.get_project.return_value = {'name': 'Readable'}
        self.pipelines.find_builds.return_value = [_build(3)]
        ref = PipelineResourceRef('up', 4, url=f"https://d/org/{PROJECT_GUID}/_apis/pipelines/4", version='1.0')
        self.resolver.resolve_build(ref)
        self.assertEqual(self.pipelines.find_builds.call_args[0][0], 'Readable')

    def test_custom_strategy_list(self):
        calls = []

        def custom(resolver, ref, project):
            calls.append(ref.alias)
            return _build(42)
        resolver = ResourceGraphResolver(self.pipelines, Mock(), strategies=[direct_build, custom])
        ref = PipelineResourceRef('up', 4, url='https://d/org/Proj/_apis/pipelines/4', version='1.0')
        self.assertEqual(resolver.resolve_build(ref)['id'], 42)
        self.assertEqual(calls, ['up'])

    def test_build_number_strategy_needs_version(self):
        ref = PipelineResourceRef('up', 4, url='https://d/org/Proj/_apis/pipelines/4')
        self.assertIsNone(build_by_number(self.resolver, ref, 'Proj'))


if __name__ == '__main__':
    unittest.main()
