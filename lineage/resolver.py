"""
Pipeline lineage resolver.
Walks a pipeline's run history from newest to oldest and returns the nearest older run that is
comparable with the target run.
"""
import logging
from typing import Optional, Dict, Any, Union

from normalize.models import PipelineRun
from normalize.util import normalize_pipeline_run

logger = logging.getLogger(__name__)

SKIPPED_RESULTS = ('canceled', 'failed', 'canceling')


def _as_run(run: Union[PipelineRun, Dict[str, Any]]) -> PipelineRun:
    return run if isinstance(run, PipelineRun) else normalize_pipeline_run(run)


def is_invalid_pipeline_run(run: Union[PipelineRun, Dict[str, Any]], target_run_id: int, from_stage: str = '') -> bool:
    """True when a history entry can never be the predecessor of target_run_id.

    Without a stage filter only succeeded runs qualify; with one, the stage check decides
    for runs that did not fail outright.
    """
    run = _as_run(run)
    if run.run_id is None or run.run_id >= target_run_id:
        return True
    if run.result in SKIPPED_RESULTS:
        return True
    if not from_stage and run.result == 'unknown':
        return True
    return not from_stage and run.result != 'succeeded'


def is_matching_pipeline(from_run: Union[PipelineRun, Dict[str, Any]], target_run: Union[PipelineRun, Dict[str, Any]], search_different_commit: bool) -> bool:
    """Compare the primary repository resources of two runs.

    Same repository and same version matches unless a different commit is wanted; different
    versions match only on the same refName.
    """
    from_repo = _as_run(from_run).repository
    target_repo = _as_run(target_run).repository
    if from_repo is None or target_repo is None:
        return False
    if from_repo.repository_id != target_repo.repository_id:
        return False
    if from_repo.version == target_repo.version:
        return not search_different_commit
    return from_repo.ref_name == target_repo.ref_name


class PipelineLineageResolver:
    def __init__(self, pipelines):
        self.pipelines = pipelines

    def get_stage(self, project: str, run_id, stage_name: str) -> Optional[Dict[str, Any]]:
        try:
            records = self.pipelines.get_build_timeline(project, run_id)
        except Exception as ex:
            logger.error(f"Error fetching timeline of pipeline run {run_id}: {ex}")
            return None
        for record in records:
            if record.get('type') == 'Stage' and record.get('name') == stage_name:
                return record
        return None

    def is_stage_successful(self, run: Union[PipelineRun, Dict[str, Any]], project: str, stage_name: str) -> bool:
        stage = self.get_stage(project, _as_run(run).run_id, stage_name)
        return bool(stage) and stage.get('state') == 'completed' and stage.get('result') == 'succeeded'

    def find_previous_pipeline(self, project: str, pipeline_id, to_run_id: int, target_run: Union[PipelineRun, Dict[str, Any]], search_different_commit: bool = False, from_stage: str = '') -> Optional[int]:
        """Return the id of the nearest valid predecessor of to_run_id, or None.

        None also covers a run history that could not be fetched.
        """
        target = _as_run(target_run)
        try:
            history = self.pipelines.get_run_history(project, pipeline_id)
        except Exception as ex:
            logger.error(f"Could not fetch Pipeline Run History: {ex}")
            return None
        if not history:
            return None

        for raw in history:
            run = _as_run(raw)
            if is_invalid_pipeline_run(run, to_run_id, from_stage):
                continue
            if from_stage and not self.is_stage_successful(run, project, from_stage):
                continue
            try:
                details = _as_run(self.pipelines.get_run(project, pipeline_id, run.run_id))
            except Exception as ex:
                logger.warning(f"skipping run {run.run_id}, details unavailable: {ex}")
                continue
            if details.repository is None:
                continue
            if is_matching_pipeline(details, target, search_different_commit):
                logger.info(f"found previous run {run.run_id} for run {to_run_id} of pipeline {pipeline_id}")
                return run.run_id
        logger.info(f"no previous run found for run {to_run_id} of pipeline {pipeline_id}")
        return None
