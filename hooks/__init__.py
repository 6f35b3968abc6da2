"""
Write entry points used by application features.
"""

from hooks.enqueuer import EnqueueResult, OperationEnqueuer

__all__ = ['EnqueueResult', 'OperationEnqueuer']
