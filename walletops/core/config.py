from __future__ import annotations

from functools import lru_cache

from pydantic import NonNegativeInt, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_COMMITMENTS = {"processed", "confirmed", "finalized"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WALLETOPS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "WalletOps"
    environment: str = "production"
    log_level: str = "INFO"

    rpc_url: str = "https://api.mainnet-beta.solana.com"
    rpc_timeout_seconds: PositiveInt = 30
    rpc_max_retries: PositiveInt = 5
    commitment: str = "confirmed"
    confirm_timeout_seconds: PositiveInt = 60
    confirm_poll_seconds: float = 0.5

    job_registry_capacity: PositiveInt = 1000
    blocking_pool_workers: PositiveInt = 8

    max_operands: PositiveInt = 200
    min_reserve_lamports: NonNegativeInt = 5_000
    fee_buffer_lamports: NonNegativeInt = 5_000

    transfer_chunk_size: PositiveInt = 10
    refund_chunk_size: PositiveInt = 1
    close_chunk_size: PositiveInt = 5
    burn_chunk_size: PositiveInt = 5
    transfer_delay_ms: NonNegativeInt = 500
    refund_delay_ms: NonNegativeInt = 200
    close_delay_ms: NonNegativeInt = 300
    burn_delay_ms: NonNegativeInt = 300

    poll_interval_ms: PositiveInt = 500
    poll_timeout_ms: PositiveInt = 30_000
    max_concurrent_jobs: PositiveInt = 5

    @field_validator("rpc_url", mode="before")
    @classmethod
    def _normalize_rpc_url(cls, value: str) -> str:
        raw = str(value).strip()
        if not raw.startswith(("http://", "https://")):
            raise ValueError("rpc_url must be an http(s) URL")
        return raw

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        normalized_commitment = self.commitment.lower().strip()
        if normalized_commitment not in SUPPORTED_COMMITMENTS:
            raise ValueError(f"commitment must be one of {sorted(SUPPORTED_COMMITMENTS)}")
        self.commitment = normalized_commitment

        if self.confirm_poll_seconds <= 0:
            raise ValueError("confirm_poll_seconds must be greater than zero")

        if self.poll_timeout_ms < self.poll_interval_ms:
            raise ValueError("poll_timeout_ms must be greater than or equal to poll_interval_ms")

        self.log_level = self.log_level.upper().strip()
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
