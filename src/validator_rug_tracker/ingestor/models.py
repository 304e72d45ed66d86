"""Data models for the ingestor module."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

MIN_COMMISSION = Decimal("0")
MAX_COMMISSION = Decimal("100")


class ReadingValidationError(ValueError):
    """Raised when a per-validator reading is malformed."""

    def __init__(self, message: str, vote_pubkey: str | None = None) -> None:
        super().__init__(message)
        self.vote_pubkey = vote_pubkey


class MevState(str, Enum):
    """Observed state of a validator's MEV commission."""

    ENABLED = "enabled"
    DISABLED = "disabled"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MevCommission:
    """MEV commission as a tagged value.

    ``ENABLED`` carries a percentage; ``DISABLED`` means the validator does not
    run an MEV client; ``UNKNOWN`` means the value was not observed and must not
    be treated as either of the other two.
    """

    state: MevState
    value: Decimal | None = None

    def __post_init__(self) -> None:
        if self.state == MevState.ENABLED and self.value is None:
            raise ValueError("Enabled MEV commission requires a value")
        if self.state != MevState.ENABLED and self.value is not None:
            raise ValueError(f"MEV commission in state {self.state.value} cannot carry a value")

    @classmethod
    def enabled(cls, value: Decimal | int | str) -> "MevCommission":
        return cls(state=MevState.ENABLED, value=Decimal(str(value)))

    @classmethod
    def disabled(cls) -> "MevCommission":
        return cls(state=MevState.DISABLED)

    @classmethod
    def unknown(cls) -> "MevCommission":
        return cls(state=MevState.UNKNOWN)

    @classmethod
    def from_bps(cls, bps: Any, *, running: bool = True) -> "MevCommission":
        """Build from a Jito basis-point value (10000 bps == 100%)."""
        if not running or bps is None:
            return cls.disabled()
        return cls.enabled(Decimal(str(bps)) / Decimal("100"))

    @property
    def is_observed(self) -> bool:
        return self.state != MevState.UNKNOWN

    def __str__(self) -> str:
        if self.state == MevState.ENABLED:
            return f"{self.value}%"
        return self.state.value


@dataclass(frozen=True)
class JitoValidatorInfo:
    """MEV details for one validator from the Jito API."""

    vote_account: str
    mev_commission_bps: int | None
    running_jito: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JitoValidatorInfo":
        bps = data.get("mev_commission_bps")
        return cls(
            vote_account=str(data["vote_account"]),
            mev_commission_bps=int(bps) if bps is not None else None,
            running_jito=bool(data.get("running_jito", False)),
        )

    def to_mev_commission(self) -> MevCommission:
        return MevCommission.from_bps(self.mev_commission_bps, running=self.running_jito)


def _parse_commission(raw: Any, vote_pubkey: str) -> Decimal:
    if raw is None or isinstance(raw, bool):
        raise ReadingValidationError("commission is missing", vote_pubkey)
    try:
        value = Decimal(str(raw))
    except InvalidOperation as e:
        raise ReadingValidationError(f"commission {raw!r} is not numeric", vote_pubkey) from e
    if not value.is_finite() or value < MIN_COMMISSION or value > MAX_COMMISSION:
        raise ReadingValidationError(f"commission {raw!r} is outside 0-100", vote_pubkey)
    return value


@dataclass(frozen=True)
class ValidatorReading:
    """One fresh observation of a validator's metrics for the current epoch."""

    vote_pubkey: str
    commission: Decimal
    mev_commission: MevCommission
    delinquent: bool
    identity_pubkey: str | None = None
    name: str | None = None

    @classmethod
    def from_vote_account(
        cls,
        data: dict[str, Any],
        *,
        delinquent: bool,
        mev_commission: MevCommission | None = None,
        name: str | None = None,
    ) -> "ValidatorReading":
        """Create a reading from a ``getVoteAccounts`` entry.

        Raises:
            ReadingValidationError: If the entry is missing its vote pubkey or
                carries an invalid commission.
        """
        vote_pubkey = data.get("votePubkey")
        if not vote_pubkey or not isinstance(vote_pubkey, str):
            raise ReadingValidationError("votePubkey is missing")
        return cls(
            vote_pubkey=vote_pubkey,
            commission=_parse_commission(data.get("commission"), vote_pubkey),
            mev_commission=mev_commission or MevCommission.unknown(),
            delinquent=delinquent,
            identity_pubkey=data.get("nodePubkey") or None,
            name=name,
        )

    @property
    def display_name(self) -> str:
        return self.name or self.vote_pubkey


@dataclass(frozen=True)
class ChainState:
    """Result of one pull from the chain."""

    epoch: int
    slot: int | None
    readings: tuple[ValidatorReading, ...]
    rejected: int = 0
    fetched_at: datetime = field(default_factory=lambda: datetime.now(UTC))
