#!/usr/bin/env python3
"""
Liquidity agent command line interface.

Usage:
    liquidity-agent --paper --config config/agent.example.yaml status
    liquidity-agent --config config/agent.yaml deposit 100 --slippage 0.5
    liquidity-agent --config config/agent.yaml withdraw --percentage 50
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import logging_config

from .agent import LiquidityAgent, build_agent
from .bounds import pool_price
from .config_loader import AgentConfig, get_default_config, load_agent_config, resolve_credentials
from .config_schema import validate_config_file
from .exceptions import LiquidityAgentError, ValidationError
from .types import DepositRequest, FlowResult, StepResult, WithdrawRequest
from .utils import format_units, short_address, timestamp_to_iso
from .version import get_version


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="liquidity-agent",
        description="Deposit into and withdraw from an AMM pool with staking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Simulated run against the paper ledger
  liquidity-agent --paper --config config/agent.example.yaml deposit 100

  # Show balances of the live account
  liquidity-agent --config config/agent.yaml summary

  # Withdraw half of the staked position with batching
  liquidity-agent --config config/agent.yaml withdraw --percentage 50 --batch
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to agent config YAML (default: built-in Base mainnet config)",
    )
    parser.add_argument("--paper", action="store_true", help="Use the simulated paper ledger")
    parser.add_argument("--env-file", type=Path, help="Path to .env file with secrets")
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--debug", action="store_true", help="Verbose logging")
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Only warnings and errors")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Initialize and show agent status")
    sub.add_parser("pool", help="Show discovered pool and every pool variant for the pair")
    sub.add_parser("summary", help="Show account balances and position")
    sub.add_parser("claim", help="Claim staking rewards")

    estimate = sub.add_parser("estimate", help="Quote a deposit without submitting it")
    estimate.add_argument("amount", help="Amount of base asset, e.g. 100")
    estimate.add_argument("--split", help="Share for asset A in percent (default 50)")

    validate = sub.add_parser("validate", help="Validate a config file without connecting")
    validate.add_argument("file", type=Path, help="Config file to validate")

    deposit = sub.add_parser("deposit", help="Deposit base asset into the pool and stake")
    deposit.add_argument("amount", help="Amount of base asset, e.g. 100")
    deposit.add_argument("--split", help="Share for asset A in percent (default 50)")
    _add_flow_options(deposit)

    withdraw = sub.add_parser("withdraw", help="Unstake and withdraw to base asset")
    withdraw.add_argument(
        "--percentage", "-p", type=int, default=100, help="Share of staked position (1-100)"
    )
    _add_flow_options(withdraw)

    return parser.parse_args(argv)


def _add_flow_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--slippage", help="Slippage tolerance in percent (0.1-5)")
    batching = parser.add_mutually_exclusive_group()
    batching.add_argument(
        "--batch", dest="use_batching", action="store_true", default=None, help="Batch independent calls"
    )
    batching.add_argument(
        "--no-batch", dest="use_batching", action="store_false", help="Run every call sequentially"
    )
    parser.add_argument(
        "--optimize-gas", action="store_true", help="Prefer batching wherever the ledger supports it"
    )


def load_config(args: argparse.Namespace) -> AgentConfig:
    if args.config:
        return load_agent_config(args.config)
    return get_default_config()


# === OUTPUT ===


def _print_steps(steps: List[StepResult]) -> None:
    for index, step in enumerate(steps, 1):
        mark = "✅" if step.success else "❌"
        tx = f" tx {short_address(step.tx_hash)}" if step.tx_hash else ""
        gas = f" gas {step.gas_used}" if step.gas_used else ""
        print(f"  {index}. {mark} {step.step or step.operation.value}{tx}{gas}")


def print_flow_result(result: FlowResult, agent: LiquidityAgent) -> None:
    config = agent.config
    title = result.flow_kind.value.upper()
    if result.success:
        print(f"\n✅ {title} COMPLETE")
    else:
        print(f"\n❌ {title} FAILED at {result.failed_step}: {result.error}")
        if result.error_category:
            print(f"   Category: {result.error_category.value}")

    if result.steps:
        print("\nSteps:")
        _print_steps(result.steps)

    receipt = result.receipt
    if receipt is not None:
        print(f"\nReceipt {receipt.receipt_id}")
        if hasattr(receipt, "deposit_amount"):
            print(f"  Deposited:  {receipt.deposit_amount} {receipt.base_asset}")
            print(f"  {config.asset_a}:  {format_units(receipt.amount_a, config.asset_a.decimals)}")
            print(f"  {config.asset_b}:  {format_units(receipt.amount_b, config.asset_b.decimals)}")
            print(f"  LP staked:  {format_units(receipt.staked_balance, 18)}")
        else:
            print(f"  Withdrawn:  {receipt.percentage}% ({format_units(receipt.unstaked_amount, 18)} LP)")
            print(
                f"  Final {receipt.base_asset}: "
                f"{format_units(receipt.final_base_balance, config.base_asset.decimals)}"
            )
        print(f"  Pool:  {receipt.pool_address}")
        print(f"  Gauge: {receipt.gauge_address}")

    if result.recovery is not None:
        outcome = result.recovery
        print("\nRecovery:")
        for attempt in outcome.attempted_actions:
            mark = "✅" if attempt.success else "❌"
            print(f"  {mark} {attempt.action.name}: {attempt.message}")
        if outcome.manual_intervention:
            print("  🚨 Manual intervention required")


async def _show_status(agent: LiquidityAgent) -> None:
    status = agent.orchestrator.get_status()
    stats = status.stats
    print("\n📊 AGENT STATUS")
    print(f"  Account:     {status.account_address}")
    print(f"  Initialized: {status.is_initialized}")
    if status.pool_info:
        pool = status.pool_info
        print(f"  Pool:        {pool.pool_address} ({pool.variant})")
        print(f"  Gauge:       {pool.gauge_address}")
    print(
        f"  Flows:       {stats.total} total, {stats.successful} ok, {stats.failed} failed "
        f"({stats.success_rate_pct:.1f}%)"
    )
    print(
        f"  Recovery:    {stats.recovery.total_errors} errors, "
        f"{stats.recovery.recovered_errors} recovered, "
        f"{stats.recovery.manual_interventions} manual"
    )
    if status.last_operation:
        print(f"  Last:        {status.last_operation} at {timestamp_to_iso(status.last_operation_time)}")


async def _show_pool(agent: LiquidityAgent) -> None:
    config = agent.config
    pool = agent.orchestrator.get_pool_info()
    variants = await agent.orchestrator.list_pools()
    print(f"\n🏊 POOLS FOR {config.asset_a}/{config.asset_b}")
    for variant, address in variants.items():
        marker = " ← selected" if pool and pool.pool_address.lower() == address.lower() else ""
        print(f"  {variant:<9} {address}{marker}")
    if pool:
        reserves = pool.reserves
        print(f"  Reserves: {format_units(reserves.reserve_a, pool.asset_a.decimals)} {pool.asset_a}"
              f" / {format_units(reserves.reserve_b, pool.asset_b.decimals)} {pool.asset_b}")
        print(f"  LP supply: {format_units(reserves.total_supply, 18)}")
        price = pool_price(
            reserves.reserve_a, reserves.reserve_b, pool.asset_a.decimals, pool.asset_b.decimals
        )
        if price is not None:
            print(f"  Price:     1 {pool.asset_a} = {price:.6f} {pool.asset_b}")
            print(f"             1 {pool.asset_b} = {1 / price:.6f} {pool.asset_a}")


async def _show_summary(agent: LiquidityAgent) -> None:
    summary = await agent.orchestrator.get_account_summary()
    config = agent.config
    print("\n💼 ACCOUNT SUMMARY")
    print(f"  Account: {summary.account_address}")
    print(f"  Native:  {format_units(summary.native_balance, 18)} ETH")
    for symbol, units in summary.balances.items():
        print(f"  {symbol:<8} {format_units(units, config.tokens[symbol].decimals)}")
    print(f"  LP:      {format_units(summary.lp_balance, 18)}")
    print(f"  Staked:  {format_units(summary.staked_balance, 18)}")


async def _show_estimate(agent: LiquidityAgent, amount: str, split: Optional[str]) -> None:
    config = agent.config
    estimate = await agent.orchestrator.estimate_deposit(amount, split)
    print(f"\n🧮 DEPOSIT ESTIMATE FOR {amount} {config.base_asset}")
    print(f"  {config.asset_a.symbol:<8} {format_units(estimate.amount_a, config.asset_a.decimals)}")
    print(f"  {config.asset_b.symbol:<8} {format_units(estimate.amount_b, config.asset_b.decimals)}")
    print(
        f"  Used:    {format_units(estimate.used_a, config.asset_a.decimals)} {config.asset_a}"
        f" + {format_units(estimate.used_b, config.asset_b.decimals)} {config.asset_b}"
    )
    print(f"  LP:      {format_units(estimate.expected_lp, 18)}")
    if estimate.price_a_in_b is not None:
        print(f"  Price:   1 {config.asset_a} = {estimate.price_a_in_b:.6f} {config.asset_b}")


def _result_json(result: FlowResult) -> str:
    payload = {
        "success": result.success,
        "flow": result.flow_kind.value,
        "error": result.error,
        "failed_step": result.failed_step,
        "receipt_id": result.receipt.receipt_id if result.receipt else None,
        "steps": [
            {"step": s.step, "operation": s.operation.value, "success": s.success, "tx_hash": s.tx_hash}
            for s in result.steps
        ],
        "recovered": result.recovery.recovered if result.recovery else None,
    }
    return json.dumps(payload, indent=2)


# === COMMANDS ===


async def run_command(args: argparse.Namespace, agent: LiquidityAgent) -> int:
    if not await agent.start():
        print("❌ Pool discovery failed; see log for details", file=sys.stderr)
        return 1

    orchestrator = agent.orchestrator
    if args.command == "status":
        await _show_status(agent)
        return 0
    if args.command == "pool":
        await _show_pool(agent)
        return 0
    if args.command == "summary":
        await _show_summary(agent)
        return 0
    if args.command == "estimate":
        await _show_estimate(agent, args.amount, args.split)
        return 0
    if args.command == "claim":
        step = await orchestrator.claim_rewards()
        print(f"{'✅' if step.success else '❌'} claim rewards: {step.error or step.tx_hash}")
        return 0 if step.success else 1

    if args.command == "deposit":
        request = DepositRequest(
            amount=args.amount,
            slippage_pct=args.slippage,
            use_batching=args.use_batching,
            optimize_for_gas=args.optimize_gas,
            split_ratio_pct=args.split,
        )
        result = await orchestrator.execute_deposit_flow(request)
    else:
        request = WithdrawRequest(
            percentage=args.percentage,
            slippage_pct=args.slippage,
            use_batching=args.use_batching,
            optimize_for_gas=args.optimize_gas,
        )
        result = await orchestrator.execute_withdraw_flow(request)

    if args.json:
        print(_result_json(result))
    else:
        print_flow_result(result, agent)
    return 0 if result.success else 1


async def _main_async(args: argparse.Namespace, config: AgentConfig) -> int:
    credentials = None
    if not args.paper:
        credentials = resolve_credentials(config, env_file=args.env_file)
    agent = build_agent(config, paper=args.paper, credentials=credentials)
    try:
        return await run_command(args, agent)
    finally:
        await agent.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)

    if args.debug:
        logging_config.setup_debug()
    elif args.quiet:
        logging_config.setup_minimal()
    else:
        logging_config.setup()

    if args.command == "validate":
        try:
            validate_config_file(args.file)
        except Exception as e:
            print(f"❌ {args.file}: {e}", file=sys.stderr)
            return 1
        print(f"✅ {args.file} is valid")
        return 0

    try:
        config = load_config(args)
    except LiquidityAgentError as e:
        print(f"❌ Config error: {e}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(_main_async(args, config))
    except ValidationError as e:
        print(f"❌ Invalid request: {e}", file=sys.stderr)
        return 2
    except LiquidityAgentError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n\n⏸ Stopped by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
