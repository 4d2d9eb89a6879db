"""
Lineage package: previous-run resolution and resource graph resolution for pipeline runs.
"""

from .resolver import PipelineLineageResolver
from .resources import ResourceGraphResolver

__all__ = ["PipelineLineageResolver", "ResourceGraphResolver"]
