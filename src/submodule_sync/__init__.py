"""
submodule-sync - bring git submodules in line with the commits their superproject records.

This package clones missing submodules in parallel, moves each one to its
recorded (or remote-tracking) commit with checkout, merge, rebase or a custom
command, collects non-fatal failures across the batch, and recurses into
nested submodules.
"""

__version__ = "0.1.0"

from .update_orchestrator import UpdateOrchestrator
from .models import (
    PathContext,
    SubmoduleRecord,
    SubmoduleSyncError,
    UpdateOptions,
    UpdateOutcome,
    UpdateStrategy,
)
from .git_manager import GitManager
from .submodule_mapper import SubmoduleMapper
from .clone_phase import ClonePhase
from .update_executor import UpdateExecutor
from .error_aggregator import ErrorAggregator

__all__ = [
    "UpdateOrchestrator",
    "PathContext",
    "SubmoduleRecord",
    "SubmoduleSyncError",
    "UpdateOptions",
    "UpdateOutcome",
    "UpdateStrategy",
    "GitManager",
    "SubmoduleMapper",
    "ClonePhase",
    "UpdateExecutor",
    "ErrorAggregator",
]
