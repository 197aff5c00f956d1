"""Pipeline Orchestrator, run registry and batch runner."""

from .batch import BatchResult, run_batch, select_pending
from .orchestrator import PipelineOrchestrator, build_orchestrator
from .runs import PipelineRun, RunHandle

__all__ = [
    "BatchResult",
    "run_batch",
    "select_pending",
    "PipelineOrchestrator",
    "build_orchestrator",
    "PipelineRun",
    "RunHandle",
]
