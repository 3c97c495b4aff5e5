"""
Workflows package - Sample workflow definitions.
"""

from flowexec.workflows.samples import SAMPLE_WORKFLOWS, register_sample_workflows

__all__ = [
    "SAMPLE_WORKFLOWS",
    "register_sample_workflows",
]
