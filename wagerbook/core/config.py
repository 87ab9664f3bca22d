from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CONTRACT_ADDRESSES = {
    "casino": "0xf9c9eEb3C57Af50436a1F26B186E45aFB6a01845",
    "governance": "0x9c96f397AF99891a0Ab1B6A7d48602EfD75850Bd",
    "token": "0x7C13805C177c62b0520F24d657eDE884e274cb9b",
}


def _normalize_address(value: str) -> str:
    candidate = value.strip()
    body = candidate[2:] if candidate.lower().startswith("0x") else candidate
    if len(body) != 40:
        raise ValueError(f"'{value}' is not a 20-byte hex address")
    try:
        int(body, 16)
    except ValueError as exc:
        raise ValueError(f"'{value}' is not a 20-byte hex address") from exc
    return "0x" + body.lower()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    rpc_url: AnyUrl = Field(
        default="http://127.0.0.1:8545",
        description="JSON-RPC endpoint used for historical log queries and block lookups",
    )
    rpc_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to every JSON-RPC request",
        gt=0,
    )
    contract_addresses: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CONTRACT_ADDRESSES),
        description="Deployed contract addresses keyed by contract name",
        validate_default=True,
    )
    casino_contract: str = Field(
        default="casino",
        description="Contract name (or literal address) emitting BetPlaced/BetResolved",
    )
    token_contract: str | None = Field(
        default="token",
        description="House token contract whose balance is shown alongside gains (blank disables)",
    )
    log_from_block: int = Field(
        default=0,
        description="Earliest block scanned when rebuilding the ledger",
        ge=0,
    )
    placement_lookback_blocks: int | None = Field(
        default=None,
        description="Limit BetPlaced queries to the most recent N blocks (unset scans from log_from_block)",
        ge=1,
    )
    resolution_lookback_blocks: int | None = Field(
        default=None,
        description="Limit BetResolved queries to the most recent N blocks (unset scans from log_from_block)",
        ge=1,
    )
    widen_on_orphans: bool = Field(
        default=True,
        description="Refetch placements from log_from_block once when a narrowed window produced orphans",
    )
    source_retry_attempts: int = Field(
        default=3,
        description="Number of attempts made when the event source is unavailable",
        ge=1,
    )
    source_retry_backoff_seconds: list[float] | tuple[float, ...] | str = Field(
        default_factory=lambda: [0.5, 1.0, 2.0],
        description="Comma-separated list or array of backoff delays (seconds) between event source retries",
    )
    cancel_superseded_refreshes: bool = Field(
        default=True,
        description="Cancel in-flight refreshes once a newer session generation is triggered",
    )
    min_bet_ether: Decimal = Field(
        default=Decimal("0.01"),
        description="Smallest wager accepted by the submission boundary",
    )
    max_bet_ether: Decimal = Field(
        default=Decimal("10"),
        description="Largest wager accepted by the submission boundary",
    )
    explorer_tx_url: str = Field(
        default="https://goerli.etherscan.io/tx/{}",
        description="Block explorer URL template for submitted transactions",
    )

    @field_validator("contract_addresses", mode="after")
    @classmethod
    def _normalize_contract_addresses(cls, value: dict[str, str]) -> dict[str, str]:
        return {name.lower(): _normalize_address(address) for name, address in value.items()}

    @field_validator("token_contract", mode="before")
    @classmethod
    def _blank_token_contract(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("min_bet_ether", "max_bet_ether", mode="before")
    @classmethod
    def _parse_ether_bound(cls, value: Any) -> Decimal:
        try:
            parsed = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValueError("bet bounds must be decimal ether amounts") from exc
        if parsed <= 0:
            raise ValueError("bet bounds must be positive")
        return parsed

    @field_validator("source_retry_backoff_seconds", mode="before")
    @classmethod
    def _parse_retry_backoff(cls, value: Any) -> list[float]:
        if value in (None, "", []):
            return [0.5, 1.0, 2.0]
        if isinstance(value, str):
            tokens = [token.strip() for token in value.split(",") if token.strip()]
            if not tokens:
                raise ValueError("SOURCE_RETRY_BACKOFF_SECONDS must contain at least one value")
            value = tokens
        if isinstance(value, (list, tuple)):
            backoff: list[float] = []
            for item in value:
                try:
                    delay = float(item)
                except (TypeError, ValueError) as exc:
                    raise ValueError("SOURCE_RETRY_BACKOFF_SECONDS entries must be numeric") from exc
                if delay <= 0:
                    raise ValueError("SOURCE_RETRY_BACKOFF_SECONDS entries must be positive")
                backoff.append(delay)
            if not backoff:
                raise ValueError("SOURCE_RETRY_BACKOFF_SECONDS must contain at least one value")
            return backoff
        raise ValueError(
            "SOURCE_RETRY_BACKOFF_SECONDS must be provided as a comma-separated string or list of numbers"
        )

    def contract_address(self, contract_id: str) -> str:
        """Resolve a configured contract name or pass a literal address through."""

        if contract_id.lower().startswith("0x"):
            return _normalize_address(contract_id)
        try:
            return self.contract_addresses[contract_id.lower()]
        except KeyError as exc:
            raise KeyError(f"Contract '{contract_id}' is not configured") from exc

    @property
    def source_retry_backoff_schedule(self) -> tuple[float, ...]:
        return tuple(float(value) for value in self.source_retry_backoff_seconds)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
