"""Solana RPC and Jito API readers with retry logic.

This module provides the chain-facing side of the pipeline:
- ``SolanaRpcClient`` for ``getEpochInfo`` and ``getVoteAccounts``
- ``JitoClient`` for MEV commission per vote account
- ``ChainStateSource`` combining both into one ``ChainState`` per tick
"""

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import httpx

from validator_rug_tracker.ingestor.models import (
    ChainState,
    JitoValidatorInfo,
    MevCommission,
    ReadingValidationError,
    ValidatorReading,
)

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class ChainSourceError(Exception):
    """Base exception for chain reader errors."""


class ChainSourceTransientError(ChainSourceError):
    """Raised for retryable errors (429/5xx, timeouts, network issues)."""


class ChainSourceUnavailableError(ChainSourceError):
    """Raised when a chain read fails after all retries."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (ChainSourceTransientError,),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for adding retry logic with exponential backoff to coroutines.

    Args:
        max_retries: Maximum number of retry attempts.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Tuple of exception types to retry on.

    Returns:
        Decorated coroutine function with retry logic.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e
                    if attempt == max_retries:
                        break

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                        attempt + 1,
                        max_retries + 1,
                        str(e),
                        delay,
                    )
                    await asyncio.sleep(delay)

            raise ChainSourceUnavailableError(
                f"All {max_retries + 1} attempts failed for {func.__name__}",
                last_exception=last_exception,
            )

        return wrapper

    return decorator


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code in RETRY_STATUS_CODES:
        raise ChainSourceTransientError(f"HTTP {response.status_code} from {response.url}")
    if response.is_error:
        raise ChainSourceError(f"HTTP {response.status_code} from {response.url}")


class SolanaRpcClient:
    """Minimal async Solana JSON-RPC client.

    Example:
        ```python
        async with httpx.AsyncClient(timeout=30.0) as http:
            rpc = SolanaRpcClient("https://api.mainnet-beta.solana.com", http)
            info = await rpc.get_epoch_info()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        http: httpx.AsyncClient,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    ) -> None:
        self._rpc_url = rpc_url
        self._http = http
        self._ids = itertools.count(1)
        self._call = with_retry(max_retries=max_retries, base_delay=retry_base_delay)(self._call_once)

    async def _call_once(self, method: str, params: list[Any] | None = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        try:
            response = await self._http.post(self._rpc_url, json=payload)
        except httpx.TransportError as e:
            raise ChainSourceTransientError(f"{method}: {e}") from e
        _raise_for_status(response)
        body = response.json()
        if body.get("error"):
            raise ChainSourceTransientError(f"{method}: RPC error {body['error']}")
        return body.get("result")

    async def get_epoch_info(self) -> dict[str, Any]:
        result = await self._call("getEpochInfo", [{"commitment": "finalized"}])
        if not isinstance(result, dict) or "epoch" not in result:
            raise ChainSourceError("getEpochInfo returned no epoch")
        return result

    async def get_vote_accounts(self) -> dict[str, list[dict[str, Any]]]:
        result = await self._call("getVoteAccounts", [{"commitment": "finalized"}])
        if not isinstance(result, dict):
            raise ChainSourceError("getVoteAccounts returned an unexpected payload")
        return {
            "current": list(result.get("current") or []),
            "delinquent": list(result.get("delinquent") or []),
        }


class JitoClient:
    """Reads MEV commission for all Jito validators."""

    def __init__(
        self,
        api_url: str,
        http: httpx.AsyncClient,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    ) -> None:
        self._api_url = api_url
        self._http = http
        self.get_validators = with_retry(max_retries=max_retries, base_delay=retry_base_delay)(
            self._get_validators_once
        )

    async def _get_validators_once(self) -> dict[str, JitoValidatorInfo]:
        try:
            response = await self._http.get(self._api_url)
        except httpx.TransportError as e:
            raise ChainSourceTransientError(f"jito validators: {e}") from e
        _raise_for_status(response)
        body = response.json()
        rows = body.get("validators", []) if isinstance(body, dict) else body
        infos: dict[str, JitoValidatorInfo] = {}
        for row in rows or []:
            try:
                info = JitoValidatorInfo.from_dict(row)
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("Skipping malformed Jito row: %s", e)
                continue
            infos[info.vote_account] = info
        return infos


class ChainStateSource:
    """Pull-based source of one ``ChainState`` per tick."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        jito: JitoClient | None = None,
        *,
        names: dict[str, str] | None = None,
    ) -> None:
        self._rpc = rpc
        self._jito = jito
        self._names = names or {}

    async def _fetch_mev(self) -> dict[str, JitoValidatorInfo] | None:
        if self._jito is None:
            return None
        try:
            return await self._jito.get_validators()
        except ChainSourceError as e:
            # MEV becomes UNKNOWN for this tick; commission tracking continues.
            logger.warning("Jito API unavailable, MEV commission unknown this tick: %s", e)
            return None

    async def fetch_state(self) -> ChainState:
        """Fetch epoch, vote accounts and MEV commission.

        Raises:
            ChainSourceUnavailableError: If the RPC cannot be reached.
            ChainSourceError: If the RPC returns an unusable payload.
        """
        epoch_info, vote_accounts, jito = await asyncio.gather(
            self._rpc.get_epoch_info(),
            self._rpc.get_vote_accounts(),
            self._fetch_mev(),
        )

        readings: list[ValidatorReading] = []
        rejected = 0
        for delinquent, key in ((False, "current"), (True, "delinquent")):
            for raw in vote_accounts[key]:
                vote_pubkey = raw.get("votePubkey")
                if jito is None:
                    mev = MevCommission.unknown()
                elif vote_pubkey in jito:
                    mev = jito[vote_pubkey].to_mev_commission()
                else:
                    mev = MevCommission.disabled()
                try:
                    readings.append(
                        ValidatorReading.from_vote_account(
                            raw,
                            delinquent=delinquent,
                            mev_commission=mev,
                            name=self._names.get(vote_pubkey or ""),
                        )
                    )
                except ReadingValidationError as e:
                    rejected += 1
                    logger.warning("Rejected reading for %s: %s", e.vote_pubkey or "(unknown)", e)

        slot = epoch_info.get("absoluteSlot")
        logger.info(
            "Fetched chain state: epoch=%s, validators=%d, rejected=%d",
            epoch_info["epoch"],
            len(readings),
            rejected,
        )
        return ChainState(
            epoch=int(epoch_info["epoch"]),
            slot=int(slot) if slot is not None else None,
            readings=tuple(readings),
            rejected=rejected,
        )
