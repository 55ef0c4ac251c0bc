"""
Live ledger gateway backed by web3.py and eth_account.

Blocking RPC calls run in the default thread pool so they never stall the
event loop; rate-limited reads are retried with exponential backoff. Every
transaction is signed locally, submitted, and confirmed by waiting for its
receipt. Balance reads for several tokens are folded into a single Multicall3
``tryAggregate`` eth_call.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.types import TxParams, Wei

from ..config_loader import AgentConfig, Credentials
from ..exceptions import (
    ApprovalFailedError,
    ConfigurationError,
    LedgerNetworkError,
    StepExecutionError,
    TransactionRevertedError,
    TransactionTimeoutError,
)
from ..types import OperationKind, PoolInfo, PoolReserves, StepResult, SwapRoute, Token
from ..utils import short_address
from ..version import user_agent
from .abi import (
    ERC20_ABI,
    FACTORY_ABI,
    GAUGE_ABI,
    MULTICALL3_ABI,
    POOL_ABI,
    ROUTER_ABI,
    VOTER_ABI,
)
from .base import LedgerGateway, is_zero_address

logger = logging.getLogger(__name__)


def _is_rate_limit(error: Exception) -> bool:
    error_msg = str(error)
    return (
        "429" in error_msg
        or "Too Many Requests" in error_msg
        or "-32005" in error_msg
        or "limit exceeded" in error_msg.lower()
    )


class Web3LedgerGateway(LedgerGateway):
    """Gateway that signs and submits real transactions."""

    def __init__(
        self,
        config: AgentConfig,
        credentials: Credentials,
        web3: Optional[Web3] = None,
        max_retries: int = 3,
    ):
        if not credentials.private_key:
            raise ConfigurationError(
                f"Private key environment variable {config.private_key_env} not set"
            )

        self.config = config
        self.max_retries = max_retries
        self.web3 = web3 or Web3(
            Web3.HTTPProvider(
                credentials.rpc_url,
                request_kwargs={
                    "timeout": 30,
                    "headers": {"Content-Type": "application/json", "User-Agent": user_agent()},
                },
            )
        )
        self.account: LocalAccount = Account.from_key(credentials.private_key)
        self._gas = config.execution.gas_limits
        self._nonce_lock = asyncio.Lock()

        contracts = config.contracts
        self.factory_address = Web3.to_checksum_address(contracts.factory)
        self.router = self.web3.eth.contract(
            address=Web3.to_checksum_address(contracts.router), abi=ROUTER_ABI
        )
        self.factory = self.web3.eth.contract(address=self.factory_address, abi=FACTORY_ABI)
        self.voter = self.web3.eth.contract(
            address=Web3.to_checksum_address(contracts.voter), abi=VOTER_ABI
        )
        self.multicall = self.web3.eth.contract(
            address=Web3.to_checksum_address(contracts.multicall), abi=MULTICALL3_ABI
        )

        logger.info(
            f"Web3 gateway ready for {config.network.name} (chain {config.network.chain_id}) "
            f"account {short_address(self.account.address)}"
        )

    @property
    def account_address(self) -> str:
        return self.account.address

    @property
    def router_address(self) -> str:
        return self.router.address

    async def initialize(self) -> None:
        connected = await self._run(self.web3.is_connected)
        if not connected:
            raise LedgerNetworkError(
                "Failed to connect to RPC", endpoint=self._endpoint(), operation="connect"
            )
        chain_id = await self._call(lambda: self.web3.eth.chain_id)
        if chain_id != self.config.network.chain_id:
            raise ConfigurationError(
                f"RPC chain id {chain_id} does not match configured "
                f"{self.config.network.chain_id}"
            )

    # === RPC PLUMBING ===

    def _endpoint(self) -> Optional[str]:
        provider = getattr(self.web3, "provider", None)
        return getattr(provider, "endpoint_uri", None)

    async def _run(self, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def _call(self, fn: Callable[[], Any], operation: str = "read") -> Any:
        """Run a read-only RPC call with rate-limit backoff."""
        for attempt in range(self.max_retries):
            try:
                return await self._run(fn)
            except ContractLogicError as e:
                raise TransactionRevertedError(
                    f"{operation} reverted: {e}", operation=operation
                ) from e
            except Exception as e:
                if _is_rate_limit(e) and attempt < self.max_retries - 1:
                    wait_time = (2 ** (attempt + 1)) + (attempt * 0.5)
                    logger.warning(f"Rate limited during {operation}, retrying in {wait_time}s")
                    await asyncio.sleep(wait_time)
                    continue
                raise LedgerNetworkError(
                    f"RPC call {operation} failed: {e}",
                    endpoint=self._endpoint(),
                    status_code=429 if _is_rate_limit(e) else None,
                    operation=operation,
                ) from e

    async def _fee_params(self) -> Dict[str, Wei]:
        """EIP-1559 fee fields capped by the configured max fee."""
        execution = self.config.execution
        block = await self._call(lambda: self.web3.eth.get_block("latest"), "get_block")
        base_fee = int(block.get("baseFeePerGas", 0))
        priority = int(Web3.to_wei(execution.max_priority_fee_gwei, "gwei"))
        cap = int(Web3.to_wei(execution.max_fee_gwei, "gwei"))
        max_fee = max(min(base_fee * 2 + priority, cap), priority)
        logger.debug(
            f"Fees: base {Web3.from_wei(base_fee, 'gwei'):.4f} gwei, "
            f"max {Web3.from_wei(max_fee, 'gwei'):.4f} gwei"
        )
        return {"maxFeePerGas": Wei(max_fee), "maxPriorityFeePerGas": Wei(priority)}

    async def _transact(
        self, function: Any, gas_limit: int, operation: OperationKind, label: str
    ) -> StepResult:
        """Build, sign, submit and confirm one contract call."""
        fees = await self._fee_params()

        async with self._nonce_lock:
            nonce = await self._call(
                lambda: self.web3.eth.get_transaction_count(self.account.address, "pending"),
                "get_nonce",
            )
            tx_params: TxParams = {
                "from": self.account.address,
                "nonce": nonce,
                "gas": gas_limit,
                "chainId": self.config.network.chain_id,
                **fees,
            }
            try:
                tx = await self._run(lambda: function.build_transaction(tx_params))
                signed = self.account.sign_transaction(tx)
                tx_hash = await self._run(
                    lambda: self.web3.eth.send_raw_transaction(signed.raw_transaction)
                )
            except ContractLogicError as e:
                raise TransactionRevertedError(
                    f"{label} would revert: {e}", operation=operation.value
                ) from e
            except (Web3Exception, ValueError, OSError) as e:
                raise LedgerNetworkError(
                    f"{label} submission failed: {e}",
                    endpoint=self._endpoint(),
                    operation=operation.value,
                ) from e

        tx_hex = self.web3.to_hex(tx_hash)
        logger.info(f"📤 {label} submitted: {tx_hex}")

        timeout = self.config.execution.receipt_timeout_s
        try:
            receipt = await self._run(
                lambda: self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
            )
        except TimeExhausted as e:
            raise TransactionTimeoutError(
                f"{label} not confirmed after {timeout}s",
                operation=operation.value,
                timeout_s=timeout,
                details={"tx_hash": tx_hex},
            ) from e
        except (Web3Exception, OSError) as e:
            raise LedgerNetworkError(
                f"Waiting for {label} receipt failed: {e}",
                endpoint=self._endpoint(),
                operation=operation.value,
            ) from e

        if receipt.get("status") != 1:
            raise TransactionRevertedError(
                f"{label} reverted in block {receipt.get('blockNumber')}",
                operation=operation.value,
                tx_hash=tx_hex,
            )

        logger.info(f"✅ {label} confirmed: {tx_hex} (gas {receipt.get('gasUsed')})")
        return StepResult.ok(
            operation,
            tx_hash=tx_hex,
            gas_used=receipt.get("gasUsed"),
            block_number=receipt.get("blockNumber"),
            explorer_url=self.config.network.tx_url(tx_hex),
        )

    def _erc20(self, token: Token):
        return self.web3.eth.contract(
            address=Web3.to_checksum_address(token.address), abi=ERC20_ABI
        )

    def _gauge(self, gauge_address: str):
        return self.web3.eth.contract(
            address=Web3.to_checksum_address(gauge_address), abi=GAUGE_ABI
        )

    def _route(self, route: SwapRoute) -> Tuple[str, str, bool, str]:
        return (
            Web3.to_checksum_address(route.token_in.address),
            Web3.to_checksum_address(route.token_out.address),
            route.stable,
            self.factory_address,
        )

    # === READS ===

    async def get_balance(self, token: Token) -> int:
        contract = self._erc20(token)
        return await self._call(
            contract.functions.balanceOf(self.account.address).call,
            f"balanceOf {token.symbol}",
        )

    async def get_balances(self, tokens: Iterable[Token]) -> Dict[str, int]:
        tokens = list(tokens)
        if not tokens:
            return {}
        calls = []
        for token in tokens:
            contract = self._erc20(token)
            calls.append(
                (
                    contract.address,
                    contract.encode_abi("balanceOf", args=[self.account.address]),
                )
            )
        results = await self._call(
            self.multicall.functions.tryAggregate(False, calls).call, "multicall balances"
        )

        balances = {}
        for token, (ok, data) in zip(tokens, results):
            if ok and data:
                balances[token.address.lower()] = self.web3.codec.decode(["uint256"], data)[0]
            else:
                logger.warning(f"Multicall balance read failed for {token.symbol}, falling back")
                balances[token.address.lower()] = await self.get_balance(token)
        return balances

    async def get_native_balance(self) -> int:
        return await self._call(
            lambda: self.web3.eth.get_balance(self.account.address), "native balance"
        )

    async def get_staked_balance(self, gauge_address: str) -> int:
        gauge = self._gauge(gauge_address)
        return await self._call(
            gauge.functions.balanceOf(self.account.address).call, "gauge balanceOf"
        )

    async def quote_swap(self, route: SwapRoute, amount_in: int) -> int:
        amounts = await self._call(
            self.router.functions.getAmountsOut(amount_in, [self._route(route)]).call,
            f"quote {route}",
        )
        return int(amounts[-1])

    async def quote_remove_liquidity(self, pool: PoolInfo, liquidity: int) -> Tuple[int, int]:
        amount_a, amount_b = await self._call(
            self.router.functions.quoteRemoveLiquidity(
                Web3.to_checksum_address(pool.asset_a.address),
                Web3.to_checksum_address(pool.asset_b.address),
                pool.is_stable,
                self.factory_address,
                liquidity,
            ).call,
            "quoteRemoveLiquidity",
        )
        return int(amount_a), int(amount_b)

    async def get_pool_address(self, token_a: Token, token_b: Token, stable: bool) -> Optional[str]:
        address = await self._call(
            self.factory.functions.getPool(
                Web3.to_checksum_address(token_a.address),
                Web3.to_checksum_address(token_b.address),
                stable,
            ).call,
            "getPool",
        )
        return None if is_zero_address(address) else Web3.to_checksum_address(address)

    async def get_gauge_address(self, pool_address: str) -> Optional[str]:
        address = await self._call(
            self.voter.functions.gauges(Web3.to_checksum_address(pool_address)).call,
            "gauges",
        )
        return None if is_zero_address(address) else Web3.to_checksum_address(address)

    async def get_pool_reserves(
        self, pool_address: str, token_a: Token, token_b: Token
    ) -> PoolReserves:
        pool = self.web3.eth.contract(
            address=Web3.to_checksum_address(pool_address), abi=POOL_ABI
        )
        token0, reserves, total_supply = await asyncio.gather(
            self._call(pool.functions.token0().call, "token0"),
            self._call(pool.functions.getReserves().call, "getReserves"),
            self._call(pool.functions.totalSupply().call, "totalSupply"),
        )
        r0, r1 = int(reserves[0]), int(reserves[1])
        if token0.lower() == token_a.address.lower():
            return PoolReserves(reserve_a=r0, reserve_b=r1, total_supply=int(total_supply))
        return PoolReserves(reserve_a=r1, reserve_b=r0, total_supply=int(total_supply))

    # === WRITES ===

    async def ensure_approval(self, token: Token, spender: str, amount: int) -> Optional[StepResult]:
        contract = self._erc20(token)
        spender = Web3.to_checksum_address(spender)
        allowance = await self._call(
            contract.functions.allowance(self.account.address, spender).call,
            f"allowance {token.symbol}",
        )
        if allowance >= amount:
            return None

        try:
            return await self._transact(
                contract.functions.approve(spender, amount),
                self._gas.approval,
                OperationKind.APPROVE,
                f"approve {token.symbol} for {short_address(spender)}",
            )
        except StepExecutionError as e:
            raise ApprovalFailedError(
                f"Approval of {token.symbol} failed: {e}",
                operation=OperationKind.APPROVE.value,
                tx_hash=e.tx_hash,
            ) from e

    async def submit_swap(
        self, route: SwapRoute, amount_in: int, min_out: int, deadline: int
    ) -> StepResult:
        await self.ensure_approval(route.token_in, self.router.address, amount_in)
        return await self._transact(
            self.router.functions.swapExactTokensForTokens(
                amount_in, min_out, [self._route(route)], self.account.address, deadline
            ),
            self._gas.swap,
            OperationKind.SWAP,
            f"swap {route}",
        )

    async def submit_add_liquidity(
        self,
        pool: PoolInfo,
        amount_a: int,
        amount_b: int,
        min_a: int,
        min_b: int,
        deadline: int,
    ) -> StepResult:
        await self.ensure_approval(pool.asset_a, self.router.address, amount_a)
        await self.ensure_approval(pool.asset_b, self.router.address, amount_b)
        return await self._transact(
            self.router.functions.addLiquidity(
                Web3.to_checksum_address(pool.asset_a.address),
                Web3.to_checksum_address(pool.asset_b.address),
                pool.is_stable,
                amount_a,
                amount_b,
                min_a,
                min_b,
                self.account.address,
                deadline,
            ),
            self._gas.add_liquidity,
            OperationKind.ADD_LIQUIDITY,
            f"addLiquidity {pool.asset_a.symbol}/{pool.asset_b.symbol}",
        )

    async def submit_remove_liquidity(
        self, pool: PoolInfo, liquidity: int, min_a: int, min_b: int, deadline: int
    ) -> StepResult:
        await self.ensure_approval(pool.lp_token, self.router.address, liquidity)
        return await self._transact(
            self.router.functions.removeLiquidity(
                Web3.to_checksum_address(pool.asset_a.address),
                Web3.to_checksum_address(pool.asset_b.address),
                pool.is_stable,
                liquidity,
                min_a,
                min_b,
                self.account.address,
                deadline,
            ),
            self._gas.remove_liquidity,
            OperationKind.REMOVE_LIQUIDITY,
            f"removeLiquidity {pool.asset_a.symbol}/{pool.asset_b.symbol}",
        )

    async def submit_stake(self, gauge_address: str, amount: int) -> StepResult:
        gauge = self._gauge(gauge_address)
        lp_address = await self._call(gauge.functions.stakingToken().call, "stakingToken")
        await self.ensure_approval(Token("LP", lp_address, 18), gauge.address, amount)
        return await self._transact(
            gauge.functions.deposit(amount),
            self._gas.stake,
            OperationKind.STAKE,
            f"stake {amount} LP",
        )

    async def submit_unstake(self, gauge_address: str, amount: int) -> StepResult:
        gauge = self._gauge(gauge_address)
        return await self._transact(
            gauge.functions.withdraw(amount),
            self._gas.unstake,
            OperationKind.UNSTAKE,
            f"unstake {amount} LP",
        )

    async def submit_claim_rewards(self, gauge_address: str) -> StepResult:
        gauge = self._gauge(gauge_address)
        return await self._transact(
            gauge.functions.getReward(self.account.address),
            self._gas.claim_rewards,
            OperationKind.CLAIM_REWARDS,
            "claim rewards",
        )

