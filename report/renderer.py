"""
Report renderer: generate JSON/Markdown/CSV summaries from a ChangeSetResult.
Markdown is rendered through the Jinja2 template report/templates/changeset.md.j2.
"""

from typing import Optional, List, Dict, Any
import os
import json
import io
import csv

from jinja2 import Environment, FileSystemLoader, select_autoescape

from correlate.models import ChangeSetResult, ChangeSet

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), 'templates')

CSV_HEADER = ['work_item_id', 'work_item_type', 'title', 'source', 'source_id', 'committer', 'date', 'pull_request_only', 'linked_items']


def _environment() -> Environment:
    return Environment(loader=FileSystemLoader(TEMPLATE_DIR), autoescape=select_autoescape(['html', 'xml']), trim_blocks=True, lstrip_blocks=True)


def _source(cs: ChangeSet):
    """Return (kind, id, person, date) for the commit or pull request behind a change set."""
    if cs.commit is not None:
        return 'commit', cs.commit.commit_id, cs.commit.committer_name, cs.commit.committer_date[:10]
    if cs.pullrequest is not None:
        pr = cs.pullrequest
        return 'pullrequest', str(pr.pull_request_id), pr.created_by, (pr.closed_date or '')[:10]
    return '', '', '', ''


def _to_dicts(items: Optional[List[Any]]) -> List[Dict[str, Any]]:
    return [i.to_dict() if hasattr(i, 'to_dict') else i for i in items or []]


def render_json(result: ChangeSetResult, submodules=None, repositories=None, pipelines=None) -> str:
    data = result.to_dict()
    if submodules is not None:
        data['submodules'] = _to_dicts(submodules)
    if repositories is not None:
        data['resourceRepositories'] = _to_dicts(repositories)
    if pipelines is not None:
        data['resourcePipelines'] = _to_dicts(pipelines)
    return json.dumps(data, indent=2, default=str)


def render_csv(result: ChangeSetResult) -> str:
    """One row per change set."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for cs in result.commit_changes:
        kind, source_id, person, date = _source(cs)
        writer.writerow([
            cs.work_item_id,
            cs.work_item_type,
            cs.title,
            kind,
            source_id,
            person,
            date,
            'yes' if cs.pull_request_work_item_only else '',
            ';'.join(str(li.id) for li in cs.linked_items),
        ])
    return output.getvalue()


def render_markdown(result: ChangeSetResult, submodules=None, repositories=None, pipelines=None, generated_at: Optional[str] = None, scope: Optional[str] = None) -> str:
    rows = []
    for cs in result.commit_changes:
        kind, source_id, person, date = _source(cs)
        rows.append({'change': cs, 'kind': kind, 'source_id': source_id, 'person': person, 'date': date})
    tmpl = _environment().get_template('changeset.md.j2')
    return tmpl.render(
        rows=rows,
        unlinked=result.commits_with_no_relations,
        submodules=submodules or [],
        repositories=repositories or [],
        pipelines=pipelines or [],
        generated_at=generated_at,
        scope=scope,
    )


def render(
    result: Optional[ChangeSetResult] = None,
    fmt: str = 'json',
    submodules: Optional[List[Any]] = None,
    repositories: Optional[List[Any]] = None,
    pipelines: Optional[List[Any]] = None,
    generated_at: Optional[str] = None,
    scope: Optional[str] = None,
) -> str:
    """Main render function; unknown formats fall back to JSON."""
    result = result or ChangeSetResult()
    fmt_l = (fmt or 'json').lower()
    if fmt_l in ('md', 'markdown'):
        return render_markdown(result, submodules, repositories, pipelines, generated_at, scope)
    if fmt_l == 'csv':
        return render_csv(result)
    return render_json(result, submodules, repositories, pipelines)
