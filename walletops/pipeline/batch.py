from __future__ import annotations

import logging
import math
import time
from typing import Callable, Sequence, TypeVar

from solders.hash import Hash
from solders.transaction import Transaction

from walletops.jobs.types import CancellationToken
from walletops.ledger.client import LedgerError
from walletops.pipeline.types import BatchRunResult, ChunkOutcome, OperationOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[int, int, str], None]

CANCELLED_ERROR = "cancelled"


def chunked(items: Sequence[T], chunk_size: int) -> list[list[int]]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be greater than zero")
    return [list(range(start, min(start + chunk_size, len(items)))) for start in range(0, len(items), chunk_size)]


def run_batches(
    operands: Sequence[T],
    chunk_size: int,
    build_tx: Callable[[Sequence[T], Hash], Transaction],
    submit: Callable[[Transaction], str],
    *,
    fetch_blockhash: Callable[[], Hash],
    describe: Callable[[T], str] = str,
    delay_seconds: float = 0.0,
    on_chunk: ProgressCallback | None = None,
    cancel_token: CancellationToken | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchRunResult:
    chunks = chunked(operands, chunk_size)
    total = len(operands)
    total_chunks = len(chunks)
    result = BatchRunResult()
    outcomes: list[OperationOutcome | None] = [None] * total
    completed = 0

    for chunk_index, indices in enumerate(chunks):
        if cancel_token is not None and cancel_token.cancelled:
            logger.info("Cancellation requested, abandoning %d remaining chunk(s)", total_chunks - chunk_index)
            result.cancelled = True
            for pending_index, pending in enumerate(chunks[chunk_index:], start=chunk_index):
                result.chunks.append(
                    ChunkOutcome(index=pending_index, operand_indices=pending, error=CANCELLED_ERROR, attempted=False)
                )
                for i in pending:
                    outcomes[i] = OperationOutcome.fail(describe(operands[i]), CANCELLED_ERROR)
            break

        members = [operands[i] for i in indices]
        chunk = ChunkOutcome(index=chunk_index, operand_indices=indices)
        try:
            blockhash = fetch_blockhash()
            transaction = build_tx(members, blockhash)
            chunk.signature = submit(transaction)
        except LedgerError as exc:
            chunk.error = str(exc)
            chunk.transient = exc.transient
        except Exception as exc:  # a failing chunk never aborts the remaining chunks
            logger.exception("Chunk %d/%d raised while building or submitting", chunk_index + 1, total_chunks)
            chunk.error = f"{type(exc).__name__}: {exc}"

        for i in indices:
            ref = describe(operands[i])
            if chunk.success:
                outcomes[i] = OperationOutcome(operand=ref, success=True, signature=chunk.signature, chunk_index=chunk_index)
            else:
                outcomes[i] = OperationOutcome(
                    operand=ref,
                    success=False,
                    error=chunk.error,
                    chunk_index=chunk_index,
                    transient=chunk.transient,
                )
        result.chunks.append(chunk)

        completed += len(indices)
        if chunk.success:
            logger.info("Chunk %d/%d confirmed: %s (%d operations)", chunk_index + 1, total_chunks, chunk.signature, len(indices))
            step = f"Completed batch {chunk_index + 1} of {total_chunks} ({completed}/{total})"
        else:
            logger.warning("Chunk %d/%d failed: %s", chunk_index + 1, total_chunks, chunk.error)
            step = f"Failed batch {chunk_index + 1} of {total_chunks} ({completed}/{total}): {chunk.error}"
        if on_chunk is not None:
            on_chunk(completed, total, step)

        if delay_seconds > 0 and chunk_index + 1 < total_chunks:
            sleep(delay_seconds)

    result.outcomes = [item for item in outcomes if item is not None]
    return result


def expected_attempts(operand_count: int, chunk_size: int) -> int:
    return math.ceil(operand_count / chunk_size) if operand_count else 0
