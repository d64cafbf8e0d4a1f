"""
Core application engine for orchestrating batch downloads.

The `BatchScheduler` expands the batch inputs and feeds a bounded worker
pool, delegating each track to a `Job` that walks it through the shared
`Pipeline` of stages.
"""

from .expansion import BatchInput, CsvImport, PlaylistReference, RequestExpander
from .job import Job
from .pipeline import Pipeline, build_pipeline
from .retry import RetryPolicy
from .scheduler import BatchScheduler

__all__ = [
    "BatchInput",
    "BatchScheduler",
    "CsvImport",
    "Job",
    "Pipeline",
    "PlaylistReference",
    "RequestExpander",
    "RetryPolicy",
    "build_pipeline",
]
