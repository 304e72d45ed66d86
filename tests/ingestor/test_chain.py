"""Tests for the Solana RPC and Jito clients."""

import json
from decimal import Decimal

import httpx
import pytest

from validator_rug_tracker.ingestor.chain import (
    ChainSourceError,
    ChainSourceTransientError,
    ChainSourceUnavailableError,
    ChainStateSource,
    JitoClient,
    SolanaRpcClient,
    with_retry,
)
from validator_rug_tracker.ingestor.models import MevState

RPC_URL = "https://rpc.example.com"
JITO_URL = "https://jito.example.com/api/v1/validators"

VOTE_A = "VoteAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
VOTE_B = "VoteBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB"
VOTE_C = "VoteCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCC"

VOTE_ACCOUNTS = {
    "current": [
        {"votePubkey": VOTE_A, "nodePubkey": "NodeA", "commission": 5},
        {"votePubkey": VOTE_B, "nodePubkey": "NodeB", "commission": 7},
        {"votePubkey": "VoteBad", "nodePubkey": "NodeX", "commission": 150},
    ],
    "delinquent": [
        {"votePubkey": VOTE_C, "nodePubkey": "NodeC", "commission": 100},
    ],
}

JITO_VALIDATORS = {
    "validators": [
        {"vote_account": VOTE_A, "mev_commission_bps": 800, "running_jito": True},
        {"vote_account": VOTE_C, "mev_commission_bps": None, "running_jito": False},
    ]
}


def rpc_handler(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    if body["method"] == "getEpochInfo":
        result = {"epoch": 812, "absoluteSlot": 350_000_123}
    elif body["method"] == "getVoteAccounts":
        result = VOTE_ACCOUNTS
    else:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601}})
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def build_source(jito_response: httpx.Response | None) -> tuple[ChainStateSource, httpx.AsyncClient]:
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == JITO_URL:
            assert jito_response is not None
            return jito_response
        return rpc_handler(request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    rpc = SolanaRpcClient(RPC_URL, http, max_retries=0, retry_base_delay=0)
    jito = JitoClient(JITO_URL, http, max_retries=0, retry_base_delay=0) if jito_response is not None else None
    return ChainStateSource(rpc, jito, names={VOTE_A: "Alpha"}), http


# === Test with_retry ===


class TestWithRetry:
    """Tests for the retry decorator."""

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        calls = 0

        @with_retry(max_retries=2, base_delay=0)
        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ChainSourceTransientError("503")
            return "ok"

        assert await flaky() == "ok"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_raises_unavailable_after_last_attempt(self):
        @with_retry(max_retries=1, base_delay=0)
        async def always_down() -> None:
            raise ChainSourceTransientError("503")

        with pytest.raises(ChainSourceUnavailableError) as exc_info:
            await always_down()

        assert isinstance(exc_info.value.last_exception, ChainSourceTransientError)

    @pytest.mark.asyncio
    async def test_non_transient_not_retried(self):
        calls = 0

        @with_retry(max_retries=3, base_delay=0)
        async def broken() -> None:
            nonlocal calls
            calls += 1
            raise ChainSourceError("400")

        with pytest.raises(ChainSourceError):
            await broken()
        assert calls == 1


# === Test SolanaRpcClient ===


class TestSolanaRpcClient:
    """Tests for SolanaRpcClient."""

    @pytest.mark.asyncio
    async def test_get_epoch_info(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(rpc_handler)) as http:
            info = await SolanaRpcClient(RPC_URL, http).get_epoch_info()

        assert info["epoch"] == 812

    @pytest.mark.asyncio
    async def test_server_error_becomes_unavailable(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = SolanaRpcClient(RPC_URL, http, max_retries=2, retry_base_delay=0)
            with pytest.raises(ChainSourceUnavailableError):
                await client.get_vote_accounts()

        assert calls == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(401))) as http:
            client = SolanaRpcClient(RPC_URL, http, max_retries=2, retry_base_delay=0)
            with pytest.raises(ChainSourceError) as exc_info:
                await client.get_epoch_info()

        assert not isinstance(exc_info.value, ChainSourceUnavailableError)


# === Test JitoClient ===


class TestJitoClient:
    """Tests for JitoClient."""

    @pytest.mark.asyncio
    async def test_parses_validators(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json=JITO_VALIDATORS))
        async with httpx.AsyncClient(transport=transport) as http:
            infos = await JitoClient(JITO_URL, http).get_validators()

        assert infos[VOTE_A].to_mev_commission().value == Decimal("8")
        assert infos[VOTE_C].to_mev_commission().state == MevState.DISABLED

    @pytest.mark.asyncio
    async def test_accepts_bare_list_and_skips_malformed(self):
        rows = [{"vote_account": VOTE_A, "mev_commission_bps": 1000, "running_jito": True}, {"bogus": 1}]
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json=rows))
        async with httpx.AsyncClient(transport=transport) as http:
            infos = await JitoClient(JITO_URL, http).get_validators()

        assert list(infos) == [VOTE_A]


# === Test ChainStateSource ===


class TestChainStateSource:
    """Tests for ChainStateSource."""

    @pytest.mark.asyncio
    async def test_fetch_state(self):
        source, http = build_source(httpx.Response(200, json=JITO_VALIDATORS))
        async with http:
            state = await source.fetch_state()

        assert state.epoch == 812
        assert state.slot == 350_000_123
        assert state.rejected == 1
        readings = {r.vote_pubkey: r for r in state.readings}
        assert set(readings) == {VOTE_A, VOTE_B, VOTE_C}

        assert readings[VOTE_A].name == "Alpha"
        assert readings[VOTE_A].identity_pubkey == "NodeA"
        assert readings[VOTE_A].mev_commission.value == Decimal("8")
        # Absent from Jito means not running an MEV client.
        assert readings[VOTE_B].mev_commission.state == MevState.DISABLED
        assert readings[VOTE_C].delinquent is True
        assert readings[VOTE_C].mev_commission.state == MevState.DISABLED

    @pytest.mark.asyncio
    async def test_jito_outage_makes_mev_unknown(self):
        source, http = build_source(httpx.Response(500))
        async with http:
            state = await source.fetch_state()

        assert len(state.readings) == 3
        assert all(r.mev_commission.state == MevState.UNKNOWN for r in state.readings)

    @pytest.mark.asyncio
    async def test_without_jito_mev_unknown(self):
        source, http = build_source(None)
        async with http:
            state = await source.fetch_state()

        assert all(r.mev_commission.state == MevState.UNKNOWN for r in state.readings)
