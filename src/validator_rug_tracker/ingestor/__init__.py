"""Data ingestion layer - Solana vote accounts and Jito MEV commission."""

from validator_rug_tracker.ingestor.chain import (
    ChainSourceError,
    ChainSourceUnavailableError,
    ChainStateSource,
    JitoClient,
    SolanaRpcClient,
)
from validator_rug_tracker.ingestor.models import (
    ChainState,
    MevCommission,
    MevState,
    ReadingValidationError,
    ValidatorReading,
)

__all__ = [
    "ChainSourceError",
    "ChainSourceUnavailableError",
    "ChainState",
    "ChainStateSource",
    "JitoClient",
    "MevCommission",
    "MevState",
    "ReadingValidationError",
    "SolanaRpcClient",
    "ValidatorReading",
]
