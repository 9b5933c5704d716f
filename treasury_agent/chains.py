"""
Chain Registry

Supported chains for cross-chain routing with their metadata.
Chain names reported by yield data sources are resolved here, so every
comparison downstream happens on `Chain` members instead of raw strings.
"""

from enum import Enum
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Union
from loguru import logger

from .errors import InvalidChain


class Chain(Enum):
    ETHEREUM = "Ethereum"
    ARBITRUM = "Arbitrum"
    OPTIMISM = "Optimism"
    POLYGON = "Polygon"
    FANTOM = "Fantom"

    @property
    def display_name(self) -> str:
        return self.value

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class ChainInfo:
    """
    Chain metadata

    `min_transfer` raises the router's global minimum for transfers out of
    this chain; None leaves the global minimum in force.
    """
    chain: Chain
    chain_id: int
    is_active: bool = True
    min_transfer: Optional[float] = None

    @property
    def name(self) -> str:
        return self.chain.value


DEFAULT_CHAINS: Dict[Chain, ChainInfo] = {
    Chain.ETHEREUM: ChainInfo(Chain.ETHEREUM, chain_id=1),
    Chain.ARBITRUM: ChainInfo(Chain.ARBITRUM, chain_id=42161),
    Chain.OPTIMISM: ChainInfo(Chain.OPTIMISM, chain_id=10),
    Chain.POLYGON: ChainInfo(Chain.POLYGON, chain_id=137),
    Chain.FANTOM: ChainInfo(Chain.FANTOM, chain_id=250),
}

# Alternate spellings seen in aggregator payloads
CHAIN_ALIASES = {
    'eth': Chain.ETHEREUM,
    'mainnet': Chain.ETHEREUM,
    'arbitrum one': Chain.ARBITRUM,
    'arb': Chain.ARBITRUM,
    'op mainnet': Chain.OPTIMISM,
    'op': Chain.OPTIMISM,
    'matic': Chain.POLYGON,
    'polygon pos': Chain.POLYGON,
    'ftm': Chain.FANTOM,
}


class ChainRegistry:
    """
    Registry of chains a transfer may start from or land on

    Membership is required for both endpoints of a transfer. Inactive
    chains stay known (for metadata lookups) but are rejected by `resolve`.
    """

    def __init__(
        self,
        chains: Optional[Dict[Chain, ChainInfo]] = None,
        active: Optional[Iterable[Union[str, Chain]]] = None
    ):
        """
        Initialize registry

        Args:
            chains: Chain metadata, defaults to the five built-in chains
            active: Optional subset of chain names to keep active
        """
        self._chains: Dict[Chain, ChainInfo] = dict(chains or DEFAULT_CHAINS)

        if active is not None:
            wanted = {self._lookup(c) for c in active}
            wanted.discard(None)
            self._chains = {
                chain: replace(info, is_active=chain in wanted)
                for chain, info in self._chains.items()
            }

        logger.debug(f"Chain registry initialized: {', '.join(self.supported_names())}")

    def _lookup(self, chain: Union[str, Chain]) -> Optional[Chain]:
        if isinstance(chain, Chain):
            return chain if chain in self._chains else None
        if not isinstance(chain, str):
            return None

        key = chain.strip().lower()
        for member in self._chains:
            if member.value.lower() == key:
                return member
        alias = CHAIN_ALIASES.get(key)
        if alias in self._chains:
            return alias
        return None

    def resolve(self, chain: Union[str, Chain]) -> Chain:
        """
        Resolve a chain name to a supported Chain

        Raises:
            InvalidChain: unknown or inactive chain
        """
        member = self._lookup(chain)
        if member is None or not self._chains[member].is_active:
            raise InvalidChain(str(chain), self.supported_names())
        return member

    def is_supported(self, chain: Union[str, Chain]) -> bool:
        member = self._lookup(chain)
        return member is not None and self._chains[member].is_active

    def info(self, chain: Union[str, Chain]) -> ChainInfo:
        return self._chains[self.resolve(chain)]

    def supported(self) -> List[Chain]:
        return [c for c, info in self._chains.items() if info.is_active]

    def supported_names(self) -> List[str]:
        return sorted(c.value for c in self.supported())

    def __contains__(self, chain) -> bool:
        return self.is_supported(chain)

    def __len__(self):
        return len(self.supported())
