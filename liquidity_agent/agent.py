"""
Agent assembly.

Wires a ledger gateway, pool discovery, the batch executor, the operation
ledger and the recovery engine into one SagaOrchestrator from an AgentConfig.
"""

from dataclasses import dataclass
from typing import Optional

from prometheus_client import CollectorRegistry

from .batch_executor import BatchExecutor
from .config_loader import AgentConfig, Credentials, resolve_credentials
from .discovery import PoolDiscovery
from .exceptions import ConfigurationError
from .gateway.base import LedgerGateway
from .gateway.paper_gateway import PaperLedgerGateway
from .gateway.web3_gateway import Web3LedgerGateway
from .metrics import AgentMetrics
from .operation_stats import OperationLedger
from .recovery import RecoveryEngine
from .saga import SagaOrchestrator
from .utils import get_logger

logger = get_logger(__name__)


@dataclass
class LiquidityAgent:
    """Assembled components of one agent session."""

    config: AgentConfig
    gateway: LedgerGateway
    orchestrator: SagaOrchestrator
    ledger: OperationLedger
    recovery: RecoveryEngine
    metrics: Optional[AgentMetrics] = None

    async def start(self) -> bool:
        """Start the metrics server if enabled, then initialize the orchestrator."""
        if self.metrics is not None and self.config.observability.metrics_enabled:
            await self.metrics.start_server(port=self.config.observability.prometheus_port)
        return await self.orchestrator.initialize()

    async def close(self) -> None:
        if self.metrics is not None and self.config.observability.metrics_enabled:
            await self.metrics.stop_server()
        await self.gateway.close()


def build_gateway(
    config: AgentConfig,
    paper: bool = False,
    credentials: Optional[Credentials] = None,
) -> LedgerGateway:
    """
    Create the ledger gateway for a configuration.

    Raises:
        ConfigurationError: If credentials are missing or the paper section
            is absent in paper mode
    """
    if paper:
        if config.paper is None:
            raise ConfigurationError("Paper mode requires a 'paper' section in the configuration")
        return PaperLedgerGateway.from_config(config)

    credentials = credentials or resolve_credentials(config)
    return Web3LedgerGateway(config, credentials)


def build_agent(
    config: AgentConfig,
    paper: bool = False,
    gateway: Optional[LedgerGateway] = None,
    credentials: Optional[Credentials] = None,
    registry: Optional[CollectorRegistry] = None,
) -> LiquidityAgent:
    """
    Assemble an agent session.

    Args:
        config: Normalized agent configuration
        paper: Use the simulated ledger from the config's paper section
        gateway: Pre-built gateway (overrides ``paper`` and ``credentials``)
        credentials: Secrets for the live gateway; read from the environment if omitted
        registry: Prometheus registry; a private one is created if omitted

    Returns:
        LiquidityAgent with a ready-to-initialize orchestrator
    """
    gateway = gateway or build_gateway(config, paper=paper, credentials=credentials)
    execution = config.execution

    metrics = AgentMetrics(registry=registry or CollectorRegistry())
    ledger = OperationLedger(metrics=metrics)

    recovery = RecoveryEngine(
        gateway,
        ledger,
        base_asset=config.base_asset,
        pool_assets=config.pair,
        enabled=config.recovery.enabled,
        dust_threshold=config.recovery.dust_threshold,
        manual_intervention=config.recovery.manual_intervention,
        slippage_pct=execution.default_slippage_pct,
        deadline_minutes=execution.deadline_minutes,
        step_timeout_s=execution.step_timeout_s,
    )

    orchestrator = SagaOrchestrator(
        gateway=gateway,
        discovery=PoolDiscovery(gateway, variants=config.pool_variants),
        batch_executor=BatchExecutor(gateway),
        recovery=recovery,
        ledger=ledger,
        base_asset=config.base_asset,
        asset_a=config.asset_a,
        asset_b=config.asset_b,
        slippage_pct=execution.default_slippage_pct,
        deadline_minutes=execution.deadline_minutes,
        step_timeout_s=execution.step_timeout_s,
        use_batching=execution.use_batching,
        split_ratio_pct=execution.split_ratio_pct,
    )

    logger.info(
        f"Agent '{config.name}' assembled ({'paper' if paper else type(gateway).__name__}), "
        f"pair {config.asset_a}/{config.asset_b}, base {config.base_asset}"
    )
    return LiquidityAgent(
        config=config,
        gateway=gateway,
        orchestrator=orchestrator,
        ledger=ledger,
        recovery=recovery,
        metrics=metrics,
    )
