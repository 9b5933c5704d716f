import asyncio
import math

import aiohttp
import pytest

from treasury_agent.errors import DataSourceError, NoPoolsFound, NoValidPools
from treasury_agent.yield_optimizer import (
    FixturePoolSource,
    LlamaPoolSource,
    PoolCandidate,
    YieldOptimizer,
    parse_pool_record,
)

AAVE = PoolCandidate(protocol="Aave", chain="Ethereum", apy=5.2, tvl=1_000_000.0)
COMPOUND = PoolCandidate(protocol="Compound", chain="Ethereum", apy=4.8, tvl=800_000.0)


def _optimizer(records=None):
    return YieldOptimizer(FixturePoolSource(records))


def test_pool_validation():
    assert PoolCandidate("Test Protocol", "Ethereum", 5.0, 1_000_000.0).is_valid()
    assert PoolCandidate("Zero APY", "Ethereum", 0.0, 1_000_000.0).is_valid()
    assert PoolCandidate("No APY", "Ethereum", None, 1_000_000.0).is_valid()
    assert not PoolCandidate("Negative TVL", "Ethereum", 5.0, -1000.0).is_valid()
    assert not PoolCandidate("Negative APY", "Ethereum", -1.0, 1000.0).is_valid()


def test_score_uses_log_tvl():
    assert AAVE.score() == pytest.approx(31.2)
    assert COMPOUND.score() == pytest.approx(4.8 * math.log10(800_000))
    assert PoolCandidate("Empty", "Ethereum", 9.0, 0.0).score() == 0.0
    assert PoolCandidate("No APY", "Ethereum", None, 1_000_000.0).score() == 0.0


def test_select_best_prefers_aave():
    best = _optimizer().select_best([COMPOUND, AAVE])
    assert best.protocol == "Aave"


def test_log_scoring_lets_smaller_high_yield_pool_win():
    big = PoolCandidate("Big", "Ethereum", 4.0, 10_000_000.0)     # 4 * 7 = 28
    small = PoolCandidate("Small", "Arbitrum", 5.0, 1_000_000.0)  # 5 * 6 = 30
    assert _optimizer().select_best([big, small]).protocol == "Small"


def test_default_fixture_best_pool():
    best = asyncio.run(_optimizer().get_best_pool())
    assert best.protocol == "Aave"
    assert best.chain == "Ethereum"
    assert best.apy == 5.2
    assert best.tvl == 1_000_000.0


def test_select_best_never_returns_negative_tvl():
    poisoned = PoolCandidate("Poisoned", "Ethereum", 1000.0, -10.0)
    best = _optimizer().select_best([poisoned, COMPOUND])
    assert best.protocol == "Compound"
    assert best.tvl >= 0


def test_all_invalid_raises_no_valid_pools():
    with pytest.raises(NoValidPools):
        _optimizer().select_best([
            PoolCandidate("A", "Ethereum", 5.0, -1.0),
            PoolCandidate("B", "Ethereum", -2.0, 100.0),
        ])


def test_get_best_pool_all_invalid_records():
    optimizer = _optimizer([{"name": "Broken", "tvl": -5, "apy": 3}])
    with pytest.raises(NoValidPools):
        asyncio.run(optimizer.get_best_pool())


def test_empty_source_raises_no_pools_found():
    with pytest.raises(NoPoolsFound):
        asyncio.run(_optimizer([]).get_best_pool())


def test_nameless_records_only_raise_no_pools_found():
    with pytest.raises(NoPoolsFound):
        asyncio.run(_optimizer([{"tvl": 5}, {"slug": None}]).fetch_candidates())


def test_tie_keeps_first_seen():
    first = PoolCandidate("First", "Ethereum", 5.0, 1000.0)
    second = PoolCandidate("Second", "Polygon", 5.0, 1000.0)
    assert _optimizer().select_best([first, second]).protocol == "First"


def test_zero_tvl_scores_zero_but_is_selectable():
    empty = PoolCandidate("Empty", "Ethereum", 12.0, 0.0)
    assert _optimizer().select_best([empty]).protocol == "Empty"
    assert _optimizer().select_best([empty, COMPOUND]).protocol == "Compound"


def test_nan_score_keeps_first_seen():
    # 0 * log10(inf) is NaN
    odd = PoolCandidate("Odd", "Ethereum", 0.0, float('inf'))
    assert math.isnan(odd.score())
    assert _optimizer().select_best([odd, AAVE]).protocol == "Odd"
    assert _optimizer().select_best([AAVE, odd]).protocol == "Aave"


def test_filter_is_idempotent():
    candidates = [
        AAVE,
        PoolCandidate("A", "Ethereum", None, 0.0),
        PoolCandidate("B", "Ethereum", 5.0, -1.0),
        PoolCandidate("C", "Ethereum", float('nan'), 10.0),
    ]
    survivors = [c for c in candidates if c.is_valid()]
    assert [c.protocol for c in survivors] == ["Aave", "A"]
    assert all(c.is_valid() for c in survivors)
    assert [c for c in survivors if c.is_valid()] == survivors


# ============================================================================
# Record parsing
# ============================================================================

def test_parse_name_and_slug():
    assert parse_pool_record({"name": "Lido", "tvl": 10}).protocol == "Lido"
    assert parse_pool_record({"slug": "lido", "tvl": 10}).protocol == "lido"
    assert parse_pool_record({"tvl": 10, "chain": "Ethereum"}) is None
    assert parse_pool_record("not a record") is None


def test_parse_tvl_variants():
    assert parse_pool_record({"name": "A", "tvl": 1234.5}).tvl == 1234.5
    assert parse_pool_record({"name": "A", "totalLiquidityUSD": 99}).tvl == 99.0
    assert parse_pool_record({"name": "A"}).tvl == 0.0
    assert parse_pool_record({"name": "A", "tvl": True}).tvl == 0.0


def test_parse_chain_variants():
    assert parse_pool_record({"name": "A", "chain": "Arbitrum"}).chain == "Arbitrum"
    assert parse_pool_record({"name": "A", "chains": ["Polygon", "Ethereum"]}).chain == "Polygon"
    assert parse_pool_record({"name": "A", "chains": []}).chain == "Unknown"
    assert parse_pool_record({"name": "A"}).chain == "Unknown"


@pytest.mark.parametrize("record, expected", [
    ({"name": "A", "apy": 4.5}, 4.5),
    ({"name": "A", "apy": 3}, 3.0),
    ({"name": "A", "apy": "7.25"}, 7.25),
    ({"name": "A", "apy": {"total": 6.1, "base": 2.0}}, 6.1),
    ({"name": "A", "apy": {"base": 2.0}}, 2.0),
    ({"name": "A", "apyBase": 1.5}, 1.5),
    ({"name": "A", "apy": "n/a", "apyBase": 1.5}, 1.5),
    ({"name": "A", "apy": None}, None),
    ({"name": "A", "apy": [1, 2]}, None),
    ({"name": "A"}, None),
])
def test_parse_apy_variants(record, expected):
    assert parse_pool_record(record).apy == expected


def test_fetch_candidates_mixes_records_and_candidates():
    optimizer = _optimizer([
        AAVE,
        {"name": "Curve", "chains": ["Arbitrum"], "tvl": 5_000_000, "apy": {"total": 6.0}},
        {"tvl": 1},
    ])
    pools = asyncio.run(optimizer.fetch_candidates())
    assert [p.protocol for p in pools] == ["Aave", "Curve"]
    assert pools[1].chain == "Arbitrum"


# ============================================================================
# HTTP source
# ============================================================================

class FakeResponse:
    def __init__(self, status=200, payload=None, json_error=None):
        self.status = status
        self.payload = payload
        self.json_error = json_error

    async def json(self, content_type=None):
        if self.json_error is not None:
            raise self.json_error
        return self.payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    closed = False

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.urls = []

    def get(self, url):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.response


def test_llama_source_returns_records():
    records = [{"name": "Aave", "tvl": 1_000_000, "chain": "Ethereum", "apy": 5.2}]
    session = FakeSession(FakeResponse(payload=records))
    source = LlamaPoolSource("https://example.test/protocols", session=session)

    pools = asyncio.run(YieldOptimizer(source).fetch_candidates())

    assert session.urls == ["https://example.test/protocols"]
    assert pools == [PoolCandidate("Aave", "Ethereum", 5.2, 1_000_000.0)]


def test_llama_source_http_error():
    source = LlamaPoolSource(session=FakeSession(FakeResponse(status=503)))
    with pytest.raises(DataSourceError) as exc_info:
        asyncio.run(source.fetch())
    assert "503" in exc_info.value.reason


def test_llama_source_rejects_non_array():
    source = LlamaPoolSource(session=FakeSession(FakeResponse(payload={"protocols": []})))
    with pytest.raises(DataSourceError):
        asyncio.run(source.fetch())


def test_llama_source_bad_json():
    source = LlamaPoolSource(session=FakeSession(FakeResponse(json_error=ValueError("Expecting value"))))
    with pytest.raises(DataSourceError):
        asyncio.run(source.fetch())


def test_llama_source_transport_error():
    source = LlamaPoolSource(session=FakeSession(error=aiohttp.ClientConnectionError("refused")))
    with pytest.raises(DataSourceError):
        asyncio.run(source.fetch())


def test_llama_source_does_not_close_external_session():
    session = FakeSession(FakeResponse(payload=[]))
    source = LlamaPoolSource(session=session)
    asyncio.run(source.close())
    assert session.closed is False
