"""
Correlate package: change-set aggregation and submodule pointer diffing.
"""

from .changeset import ChangeSetAggregator
from .submodules import get_submodules_data

__all__ = ["ChangeSetAggregator", "get_submodules_data"]
