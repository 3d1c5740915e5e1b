from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class OperationOutcome:
    operand: str
    success: bool
    skipped: bool = False
    signature: str | None = None
    error: str | None = None
    chunk_index: int | None = None
    transient: bool = False

    @classmethod
    def skip(cls, operand: str, reason: str) -> "OperationOutcome":
        return cls(operand=operand, success=False, skipped=True, error=f"skipped: {reason}")

    @classmethod
    def fail(cls, operand: str, error: str, *, transient: bool = False) -> "OperationOutcome":
        return cls(operand=operand, success=False, error=error, transient=transient)


@dataclass(slots=True)
class ChunkOutcome:
    index: int
    operand_indices: list[int]
    signature: str | None = None
    error: str | None = None
    transient: bool = False
    attempted: bool = True

    @property
    def success(self) -> bool:
        return self.signature is not None


@dataclass(slots=True)
class BatchRunResult:
    chunks: list[ChunkOutcome] = field(default_factory=list)
    outcomes: list[OperationOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def successful(self) -> int:
        return sum(1 for item in self.outcomes if item.success)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.outcomes if not item.success and not item.skipped)

    @property
    def attempts(self) -> int:
        return sum(1 for chunk in self.chunks if chunk.attempted)

    @property
    def signatures(self) -> list[str]:
        return [chunk.signature for chunk in self.chunks if chunk.signature is not None]

    @property
    def transient_failures(self) -> int:
        return sum(1 for chunk in self.chunks if chunk.attempted and not chunk.success and chunk.transient)
