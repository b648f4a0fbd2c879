"""
bulkops.models -- ORM models for the operation history store.

Architecture: bulkops/models.  Imports from bulkops_kernel.db.base only.
"""

from bulkops.models.operation import OperationErrorModel, OperationModel

__all__ = [
    "OperationErrorModel",
    "OperationModel",
]
