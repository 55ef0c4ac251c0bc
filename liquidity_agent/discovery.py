"""
Pool and gauge discovery for the configured pair.

Pool variants are tried in a fixed priority order (volatile before stable);
the first existing pool wins and must have a staking gauge.
"""

from typing import Dict, Iterable, Tuple

from .exceptions import LiquidityAgentError, NoGaugeForPoolError, PoolNotFoundError
from .gateway.base import LedgerGateway, is_zero_address
from .types import PoolInfo, Token
from .utils import get_logger, short_address

logger = get_logger(__name__)

DEFAULT_VARIANTS: Tuple[str, ...] = ("volatile", "stable")


class PoolDiscovery:
    """Resolves PoolInfo through read-only gateway queries."""

    def __init__(self, gateway: LedgerGateway, variants: Iterable[str] = DEFAULT_VARIANTS):
        self.gateway = gateway
        self.variants = tuple(variants)
        unknown = [v for v in self.variants if v not in DEFAULT_VARIANTS]
        if unknown:
            raise ValueError(f"Unknown pool variants: {unknown}")

    async def list_pools_for_pair(self, asset_a: Token, asset_b: Token) -> Dict[str, str]:
        """Every existing variant for the pair, keyed by variant name"""
        pools = {}
        for variant in self.variants:
            try:
                address = await self.gateway.get_pool_address(
                    asset_a, asset_b, variant == "stable"
                )
            except LiquidityAgentError as e:
                logger.warning(
                    f"Pool lookup {asset_a}/{asset_b} ({variant}) failed: {e}"
                )
                continue
            if not is_zero_address(address):
                pools[variant] = address
        return pools

    async def discover_pair(self, asset_a: Token, asset_b: Token) -> PoolInfo:
        """
        Find the pool and gauge for a pair.

        Args:
            asset_a: First pool asset
            asset_b: Second pool asset

        Returns:
            Immutable PoolInfo with reserves ordered as (asset_a, asset_b)

        Raises:
            PoolNotFoundError: If no variant exists for the pair
            NoGaugeForPoolError: If the pool has no gauge
        """
        logger.info(f"🔍 Discovering pool for {asset_a}/{asset_b}")

        pool_address = None
        is_stable = False
        for variant in self.variants:
            stable = variant == "stable"
            try:
                candidate = await self.gateway.get_pool_address(asset_a, asset_b, stable)
            except LiquidityAgentError as e:
                logger.warning(f"Pool lookup {asset_a}/{asset_b} ({variant}) failed: {e}")
                continue
            if not is_zero_address(candidate):
                pool_address, is_stable = candidate, stable
                logger.info(f"Found {variant} pool {short_address(candidate)}")
                break
            logger.debug(f"No {variant} pool for {asset_a}/{asset_b}")

        if pool_address is None:
            raise PoolNotFoundError(
                f"No pool found for {asset_a}/{asset_b} (tried {', '.join(self.variants)})",
                asset_a=asset_a.symbol,
                asset_b=asset_b.symbol,
            )

        gauge_address = await self.gateway.get_gauge_address(pool_address)
        if is_zero_address(gauge_address):
            raise NoGaugeForPoolError(
                f"No gauge found for pool {pool_address}",
                pool_address=pool_address,
                asset_a=asset_a.symbol,
                asset_b=asset_b.symbol,
            )

        reserves = await self.gateway.get_pool_reserves(pool_address, asset_a, asset_b)

        info = PoolInfo(
            pool_address=pool_address,
            asset_a=asset_a,
            asset_b=asset_b,
            is_stable=is_stable,
            gauge_address=gauge_address,
            reserves=reserves,
        )
        logger.info(
            f"✅ Pool {short_address(pool_address)} ({info.variant}), "
            f"gauge {short_address(gauge_address)}"
        )
        return info
