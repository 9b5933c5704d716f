"""
Yield Optimizer

Fetches candidate yield pools from an aggregator and picks the best one.

Scoring: apy * log10(tvl). The logarithm damps raw pool size so a 10x larger
pool adds one point of multiplier instead of dominating a higher-yield
smaller pool.

Data sources:
- LlamaPoolSource: HTTP aggregator (default https://api.llama.fi/protocols)
- FixturePoolSource: injected records, for tests and dry runs
"""

import math
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional, Union
import aiohttp
from loguru import logger

from .errors import DataSourceError, NoPoolsFound, NoValidPools

DEFAULT_POOL_API_URL = "https://api.llama.fi/protocols"


@dataclass
class PoolCandidate:
    """Yield pool candidate"""
    protocol: str
    chain: str
    apy: Optional[float]
    tvl: float

    def is_valid(self) -> bool:
        return self.tvl >= 0 and (self.apy or 0.0) >= 0

    def score(self) -> float:
        """apy * log10(tvl); a pool with no TVL scores 0"""
        if self.tvl <= 0:
            return 0.0
        return (self.apy or 0.0) * math.log10(self.tvl)

    def to_dict(self) -> Dict:
        return asdict(self)

    def __repr__(self):
        apy = f"{self.apy:.2f}%" if self.apy is not None else "n/a"
        return f"PoolCandidate({self.protocol} on {self.chain}: APY {apy}, TVL ${self.tvl:,.2f})"


# ============================================================================
# Tolerant record parsing
# ============================================================================

def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _parse_apy(value: Any) -> Optional[float]:
    if isinstance(value, dict):
        for key in ('total', 'base'):
            number = _as_number(value.get(key))
            if number is not None:
                return number
        return None
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return _as_number(value)


def parse_pool_record(record: Any) -> Optional[PoolCandidate]:
    """
    Parse one aggregator record

    Field variants accepted:
    - name: 'name' or 'slug' (records without either are skipped)
    - tvl: 'tvl' or 'totalLiquidityUSD' (default 0)
    - chain: 'chain' or first of 'chains' (default 'Unknown')
    - apy: number, numeric string, {'total'|'base': n}, or 'apyBase'

    Returns:
        PoolCandidate or None when the record has no usable name
    """
    if isinstance(record, PoolCandidate):
        return record
    if not isinstance(record, dict):
        return None

    name = record.get('name')
    if not isinstance(name, str):
        name = record.get('slug')
    if not isinstance(name, str):
        return None

    tvl = _as_number(record.get('tvl'))
    if tvl is None:
        tvl = _as_number(record.get('totalLiquidityUSD'))

    chain = record.get('chain')
    if not isinstance(chain, str):
        chains = record.get('chains')
        chain = chains[0] if isinstance(chains, list) and chains and isinstance(chains[0], str) else None
    if chain is None:
        chain = "Unknown"

    apy = _parse_apy(record.get('apy')) if 'apy' in record else None
    if apy is None:
        apy = _as_number(record.get('apyBase'))

    return PoolCandidate(protocol=name, chain=chain, apy=apy, tvl=tvl if tvl is not None else 0.0)


# ============================================================================
# Data sources
# ============================================================================

class PoolDataSource(ABC):
    """Capability that returns raw pool records"""

    @abstractmethod
    async def fetch(self) -> List[Union[Dict, PoolCandidate]]:
        ...

    async def close(self):
        pass


class FixturePoolSource(PoolDataSource):
    """Returns a fixed record list"""

    def __init__(self, records: Optional[Iterable[Union[Dict, PoolCandidate]]] = None):
        self.records = list(records) if records is not None else default_fixture_pools()

    async def fetch(self) -> List[Union[Dict, PoolCandidate]]:
        logger.debug("Using fixture data for pool analysis")
        return list(self.records)


def default_fixture_pools() -> List[PoolCandidate]:
    return [
        PoolCandidate(protocol="Aave", chain="Ethereum", apy=5.2, tvl=1_000_000.0),
        PoolCandidate(protocol="Compound", chain="Ethereum", apy=4.8, tvl=800_000.0),
    ]


class LlamaPoolSource(PoolDataSource):
    """
    Protocol list from a DefiLlama-compatible endpoint

    The aiohttp session is created on first use and reused across cycles.
    """

    def __init__(
        self,
        url: str = DEFAULT_POOL_API_URL,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize source

        Args:
            url: Endpoint returning a JSON array of protocol records
            timeout: Total request timeout (seconds)
            session: Optional externally managed session
        """
        self.url = url
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def fetch(self) -> List[Dict]:
        logger.info(f"Initiating pool data fetch from {self.url}")
        session = self._get_session()

        try:
            async with session.get(self.url) as response:
                if response.status < 200 or response.status >= 300:
                    error_msg = f"API request failed with status: {response.status}"
                    logger.error(error_msg)
                    logger.error("Please check API endpoint and credentials")
                    raise DataSourceError(error_msg)

                logger.debug("API request successful, parsing response data")
                payload = await response.json(content_type=None)

        except asyncio.TimeoutError:
            logger.error(f"Pool data request timed out after {self.timeout}s")
            raise DataSourceError(f"request timed out after {self.timeout}s")
        except aiohttp.ClientError as e:
            logger.error(f"Failed to send API request: {e}")
            raise DataSourceError(str(e)) from e
        except ValueError as e:
            logger.error(f"Failed to parse API response: {e}")
            raise DataSourceError(f"invalid JSON: {e}") from e

        if not isinstance(payload, list):
            logger.error("Unexpected API response format")
            raise DataSourceError("API response is not an array of protocols")

        return payload

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
            logger.debug("✓ Pool data session closed")


# ============================================================================
# Optimizer
# ============================================================================

class YieldOptimizer:
    """Select the best-scoring pool from a data source"""

    def __init__(self, source: PoolDataSource):
        self.source = source

    async def fetch_candidates(self) -> List[PoolCandidate]:
        """
        Fetch and parse candidates

        Raises:
            NoPoolsFound: source returned nothing usable
            DataSourceError: source request failed
        """
        records = await self.source.fetch()
        pools = [p for p in (parse_pool_record(r) for r in records) if p is not None]

        skipped = len(records) - len(pools)
        if skipped:
            logger.debug(f"Skipped {skipped} records without a protocol name")

        logger.info(f"Processing {len(pools)} pools for optimization")

        if not pools:
            logger.error("No pools found in the response")
            logger.error("Please check API connectivity and try again")
            raise NoPoolsFound()

        return pools

    def select_best(self, candidates: List[PoolCandidate]) -> PoolCandidate:
        """
        Pick the highest-scoring valid candidate

        Ties and NaN scores compare as equal, so the first-seen candidate stays.

        Raises:
            NoValidPools: no candidate passes is_valid()
        """
        logger.debug("Filtering pools based on APY and TVL criteria")
        valid_pools = [p for p in candidates if p.is_valid()]
        logger.info(f"Found {len(valid_pools)} pools with valid APY and TVL metrics")

        if not valid_pools:
            logger.warning("No pools found with valid APY and TVL values")
            logger.error("All pools failed validation criteria")
            raise NoValidPools()

        best = valid_pools[0]
        best_score = best.score()
        for pool in valid_pools[1:]:
            score = pool.score()
            # NaN on either side makes this False
            if score > best_score:
                best, best_score = pool, score

        logger.info(
            f"Optimal pool identified: {best.protocol} on {best.chain} "
            f"(APY: {best.apy or 0.0:.2f}%, TVL: ${best.tvl:,.2f}, score {best_score:.2f})"
        )
        return best

    async def get_best_pool(self) -> PoolCandidate:
        logger.debug("Starting DeFi pool optimization process")
        pools = await self.fetch_candidates()
        best = self.select_best(pools)
        logger.debug("Pool optimization process completed successfully")
        return best

    async def close(self):
        await self.source.close()
