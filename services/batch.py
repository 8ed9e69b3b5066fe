"""Submission of prepared write operations as one bulk write."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from pymongo.errors import BulkWriteError, PyMongoError
from pymongo.results import BulkWriteResult

from services.errors import BatchWriteFailure

logger = logging.getLogger(__name__)


class BatchExecutor:
    """Runs ordered bulk writes and turns any failure into :class:`BatchWriteFailure`.

    MongoDB applies the operations of an ordered batch one at a time and
    stops at the first error, so earlier operations may already be applied
    when a failure is reported. Callers treat the batch outcome as a whole.
    """

    def __init__(self, collection: Any) -> None:
        self.collection = collection

    def execute(self, operations: Sequence[Any], phase: str) -> Optional[BulkWriteResult]:
        if not operations:
            logger.info("No operations to submit", extra={"phase": phase, "operation_count": 0})
            return None

        try:
            result = self.collection.bulk_write(list(operations), ordered=True)
        except BulkWriteError as exc:
            write_errors = exc.details.get("writeErrors") or []
            first = write_errors[0].get("errmsg") if write_errors else str(exc)
            raise BatchWriteFailure(f"Bulk write failed during {phase}: {first}") from exc
        except PyMongoError as exc:
            raise BatchWriteFailure(f"Bulk write failed during {phase}: {exc}") from exc

        if not self._is_ok(result):
            raise BatchWriteFailure(f"Bulk write failed during {phase}")

        logger.info(
            "Bulk write applied",
            extra={"phase": phase, "operation_count": len(operations)},
        )
        return result

    @staticmethod
    def _is_ok(result: Optional[BulkWriteResult]) -> bool:
        if result is None or not result.acknowledged:
            return False
        return not result.bulk_api_result.get("writeErrors")
