# src/main.py - v1
"""CLI entry point: simulate, preserved commands.

Usage:
    resilientai simulate [--count N] [--failure-rate P] [--strategy S]
    resilientai preserved list
    resilientai preserved show <operation_id>
    resilientai preserved clear [<operation_id>]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import random
import sys

from resilientai.version import __version__

logger = logging.getLogger(__name__)

_STRATEGIES = (
    "immediate_manual",
    "retry_then_manual",
    "cached_result",
    "alternative_ai",
    "degraded_function",
)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="resilientai",
        description=f"resilientai v{__version__} - resilient AI operations with contextual caching",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- simulate ---
    p_sim = subparsers.add_parser(
        "simulate", help="Run operations against a simulated flaky backend",
    )
    p_sim.add_argument("-n", "--count", type=int, default=20, help="Operations to run (default: 20)")
    p_sim.add_argument(
        "-f", "--failure-rate", type=float, default=0.3,
        help="Probability that a primary call fails (default: 0.3)",
    )
    p_sim.add_argument(
        "-s", "--strategy", choices=_STRATEGIES, default="degraded_function",
        help="Fallback strategy (default: degraded_function)",
    )
    p_sim.add_argument("--prompts", type=int, default=5, help="Distinct prompts to cycle through")
    p_sim.add_argument("--timeout", type=float, default=0.5, help="Per-attempt deadline in seconds")
    p_sim.add_argument("--retry-delay", type=float, default=0.01, help="Linear backoff unit in seconds")
    p_sim.add_argument("--seed", type=int, default=None, help="Random seed for reproducible runs")
    p_sim.set_defaults(func=_cmd_simulate)

    # --- preserved ---
    p_pres = subparsers.add_parser(
        "preserved", help="Inspect state preserved on manual fallback",
    )
    pres_sub = p_pres.add_subparsers(dest="preserved_command")

    p_list = pres_sub.add_parser("list", help="List preserved operations")
    p_list.set_defaults(func=_cmd_preserved_list)

    p_show = pres_sub.add_parser("show", help="Show one preserved operation")
    p_show.add_argument("operation_id", help="Operation identifier")
    p_show.set_defaults(func=_cmd_preserved_show)

    p_clear = pres_sub.add_parser("clear", help="Delete preserved operations")
    p_clear.add_argument("operation_id", nargs="?", default=None, help="Only this operation")
    p_clear.set_defaults(func=_cmd_preserved_clear)

    return parser


async def _cmd_simulate(args: argparse.Namespace) -> int:
    """Drive the orchestrator with a random-failure primary and print stats."""
    from resilientai.api.facade import ResilienceRuntime
    from resilientai.config.settings import Settings
    from resilientai.resilience.errors import FallbackExhausted
    from resilientai.resilience.models import (
        FallbackStrategy,
        ManualFallbackRequest,
        OperationOptions,
        OperationPayload,
    )
    from resilientai.storage.memory_store import MemoryStateStore

    if not 0.0 <= args.failure_rate <= 1.0:
        logger.error("--failure-rate must be within [0, 1]")
        return 1

    rng = random.Random(args.seed)
    settings = Settings(retry_delay_s=args.retry_delay, state_backend="memory")

    async def flaky_backend(context: dict) -> str:
        await asyncio.sleep(rng.uniform(0, args.timeout / 4))
        if rng.random() < args.failure_rate:
            raise ConnectionError("simulated network error")
        return f"answer for {context['prompt']}"

    def manual(request: ManualFallbackRequest) -> dict:
        return {"manual": True, "reason": request.reason}

    outcomes = {"primary": 0, "cache": 0, "fallback": 0, "failed": 0}
    async with ResilienceRuntime(settings=settings, state_store=MemoryStateStore()) as runtime:
        for i in range(args.count):
            prompt = f"Suggest a palette for scene {i % args.prompts}"
            options = OperationOptions(
                timeout_s=args.timeout,
                strategy=FallbackStrategy(args.strategy),
                context={"prompt": prompt},
            )
            try:
                result = await runtime.execute(
                    flaky_backend,
                    payload=OperationPayload(prompt=prompt),
                    options=options,
                    manual_fallback=manual,
                )
            except FallbackExhausted as e:
                outcomes["failed"] += 1
                logger.info("%s", e.message)
                continue
            if result.cache_hit:
                outcomes["cache"] += 1
            elif result.fallback_used:
                outcomes["fallback"] += 1
            else:
                outcomes["primary"] += 1

        stats = runtime.get_stats()

    print(json.dumps({"outcomes": outcomes, "stats": stats.model_dump(mode="json")}, indent=2))
    return 0


async def _cmd_preserved_list(args: argparse.Namespace) -> int:
    """List preserved operation keys."""
    store = _open_state_store()
    keys = await store.list_keys()
    if not keys:
        print("No preserved operations.")
        return 0
    for key in keys:
        state = await store.load(key)
        if state is None:
            print(f"  {key}  (unreadable)")
            continue
        print(f"  {state.operation_id}  reason={state.reason}  at={state.timestamp:.0f}")
    return 0


async def _cmd_preserved_show(args: argparse.Namespace) -> int:
    """Print one preserved state as JSON."""
    from resilientai.storage.models import state_key

    store = _open_state_store()
    state = await store.load(state_key(args.operation_id))
    if state is None:
        logger.error("No preserved state for %s", args.operation_id)
        return 1
    print(state.model_dump_json(indent=2))
    return 0


async def _cmd_preserved_clear(args: argparse.Namespace) -> int:
    """Delete one or all preserved states."""
    from resilientai.storage.models import state_key

    store = _open_state_store()
    keys = [state_key(args.operation_id)] if args.operation_id else await store.list_keys()
    for key in keys:
        await store.delete(key)
    print(f"Cleared {len(keys)} preserved operation(s).")
    return 0


def _open_state_store():
    from resilientai.config.settings import Settings
    from resilientai.storage.state_store_factory import create_state_store

    return create_state_store(Settings())


def _setup_logging(verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from resilientai.logging.logger import setup_logging

    setup_logging(level="DEBUG" if verbose else "WARNING", log_format="text")


if __name__ == "__main__":
    sys.exit(main())
