from walletops.operations.base import OperationValidationError, PreconditionError, WalletOperation
from walletops.operations.service import OPERATIONS, OperationService, parse_operation
from walletops.operations.types import OperationParams, OperationReport

__all__ = [
    "OPERATIONS",
    "OperationParams",
    "OperationReport",
    "OperationService",
    "OperationValidationError",
    "PreconditionError",
    "WalletOperation",
    "parse_operation",
]
