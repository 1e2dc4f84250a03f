"""
Clients for external services.
"""

from .workflows import WorkflowsClient, WorkflowsError

__all__ = ["WorkflowsClient", "WorkflowsError"]
