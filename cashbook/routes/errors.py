"""Translate ledger failures into HTTP errors."""
from fastapi import HTTPException

from cashbook.errors import (
    AmbiguousStateError,
    InvalidArgumentError,
    LedgerError,
    NotFoundError,
    StorageFailureError,
)

STATUS_CODES = {
    NotFoundError: 404,
    InvalidArgumentError: 400,
    AmbiguousStateError: 409,
    StorageFailureError: 503,
}


def to_http_exception(error: LedgerError) -> HTTPException:
    status_code = next(
        (code for error_type, code in STATUS_CODES.items() if isinstance(error, error_type)),
        500,
    )
    if isinstance(error, AmbiguousStateError):
        # The inconsistency has already been repaired; tell the client which balances moved
        return HTTPException(
            status_code=status_code,
            detail={
                "message": error.message,
                "repaired_account_ids": error.repaired_account_ids,
            },
        )
    return HTTPException(status_code=status_code, detail=error.message)
