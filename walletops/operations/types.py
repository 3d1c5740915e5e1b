from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from walletops.jobs.types import JobCompletion, JobKind
from walletops.pipeline.types import BatchRunResult, OperationOutcome

MAX_LISTED_SIGNATURES = 10


class _OperationParams(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: str

    @property
    def job_kind(self) -> JobKind:
        return JobKind(self.kind)


class RefundWalletsParams(_OperationParams):
    kind: Literal["refund_wallets"] = "refund_wallets"
    private_keys: list[str]
    destination: str


class RefundWalletsSpecificAmountParams(_OperationParams):
    kind: Literal["refund_wallets_specific_amount"] = "refund_wallets_specific_amount"
    private_keys: list[str]
    destination: str
    amount_sol: float


class RefundSpecificAmountParams(_OperationParams):
    kind: Literal["refund_specific_amount"] = "refund_specific_amount"
    private_key: str
    destination: str
    amount_sol: float


class DistributeSolParams(_OperationParams):
    kind: Literal["distribute_sol"] = "distribute_sol"
    private_key: str
    destinations: list[str]
    total_amount_sol: float


class CloseAccountsParams(_OperationParams):
    kind: Literal["close_accounts"] = "close_accounts"
    private_key: str


class CloseTokenAccountParams(_OperationParams):
    kind: Literal["close_token_account"] = "close_token_account"
    private_key: str
    mint: str


class CloseTokenAccountsBatchParams(_OperationParams):
    kind: Literal["close_token_accounts_batch"] = "close_token_accounts_batch"
    private_key: str
    mints: list[str]


class BurnTokensParams(_OperationParams):
    kind: Literal["burn_tokens"] = "burn_tokens"
    private_key: str
    mint: str
    percentage: float


class BurnEachTokensParams(_OperationParams):
    kind: Literal["burn_each_tokens"] = "burn_each_tokens"
    private_key: str
    mints: list[str]
    percentage: float


OperationParams = Annotated[
    Union[
        RefundWalletsParams,
        RefundWalletsSpecificAmountParams,
        RefundSpecificAmountParams,
        DistributeSolParams,
        CloseAccountsParams,
        CloseTokenAccountParams,
        CloseTokenAccountsBatchParams,
        BurnTokensParams,
        BurnEachTokensParams,
    ],
    Field(discriminator="kind"),
]


@dataclass(slots=True)
class OperationReport:
    kind: JobKind
    outcomes: list[OperationOutcome] = field(default_factory=list)
    signatures: list[str] = field(default_factory=list)
    attempts: int = 0
    transient_failures: int = 0
    cancelled: bool = False
    message: str = ""

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def successful(self) -> int:
        return sum(1 for item in self.outcomes if item.success)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.outcomes if not item.success and not item.skipped)

    @property
    def skipped(self) -> int:
        return sum(1 for item in self.outcomes if item.skipped)

    def absorb(self, run: BatchRunResult) -> None:
        self.outcomes.extend(run.outcomes)
        self.signatures.extend(run.signatures)
        self.attempts += run.attempts
        self.transient_failures += run.transient_failures
        self.cancelled = self.cancelled or run.cancelled

    def summary(self) -> str:
        if self.message:
            head = self.message
        else:
            head = (
                f"{self.kind.value}: {self.successful} succeeded, {self.failed} failed, "
                f"{self.skipped} skipped in {len(self.signatures)} transaction(s)"
            )
        if self.cancelled:
            head += " (cancelled)"
        if self.signatures and len(self.signatures) <= MAX_LISTED_SIGNATURES:
            return f"{head}: {', '.join(self.signatures)}"
        return head

    def completion(self) -> JobCompletion:
        failed = self.failed
        successful = self.successful
        return JobCompletion(
            payload=self.to_payload(),
            partial=failed > 0 and successful > 0,
            failed=failed > 0 and successful == 0,
            error_message=f"{failed} operation(s) failed" if failed else None,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "summary": self.summary(),
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "attempts": self.attempts,
            "transient_failures": self.transient_failures,
            "cancelled": self.cancelled,
            "signatures": list(self.signatures),
            "outcomes": [asdict(item) for item in self.outcomes],
        }
