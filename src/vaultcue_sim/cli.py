#!/usr/bin/env python3
"""
vaultcue-sim: Interactive simulator for testing vaultcue.

Usage:
    vaultcue-sim --count 100 --latency 20
    vaultcue-sim --count 50 --error-rate 0.1 --churn 0.5
    vaultcue-sim --count 200 --concurrent 5 --no-tui
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime

from pydantic import ValidationError
from rich.console import Console

from vaultcue import DebugSettings, Settings

from vaultcue_sim.display import (
    SimulationState,
    SimulatorDisplay,
    print_final_summary,
    print_simple_stats,
)
from vaultcue_sim.runner import SimConfig, SimulationRunner

EVENT_SYMBOLS = {
    "completed": "✓",
    "failed": "✗",
    "started": "▶",
    "queued": "+",
    "retrying": "↻",
    "cancelled": "⊘",
}


def configure_logging(verbose: bool = False, level: str = "debug") -> None:
    """Configure logging for the simulator.

    ``level`` applies in verbose mode only; the TUI silences library logs.
    """
    vaultcue_logger = logging.getLogger("vaultcue")
    if verbose:
        vaultcue_logger.setLevel(DebugSettings(log_level=level).level)
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        vaultcue_logger.addHandler(handler)
    else:
        # Silence library logs - simulator handles its own display
        vaultcue_logger.setLevel(logging.CRITICAL)


async def run_with_display(config: SimConfig, use_tui: bool = True, verbose: bool = False) -> None:
    """Run simulation with visual display.

    Args:
        config: Simulation configuration
        use_tui: Use Rich TUI display (default True)
        verbose: Print event log instead of status updates (implies no-tui)
    """
    state = SimulationState()
    console = Console()

    if verbose:
        original_add_event = state.add_event

        def logging_add_event(event_type: str, task_id: str, kind: str | None = None, details: str = "") -> None:
            ts = datetime.now().strftime("%H:%M:%S.%f")[:-3]
            symbol = EVENT_SYMBOLS.get(event_type, "·")
            print(f"{ts} {symbol} {event_type:<10} {kind or '':<7} {task_id:<24} {details}")
            original_add_event(event_type, task_id, kind, details)

        state.add_event = logging_add_event  # type: ignore

    runner = SimulationRunner(config, state)

    if verbose:
        print(f"\nvaultcue-sim [verbose]  Documents: {config.count}, Latency: {config.latency_ms}ms, "
              f"Error: {config.error_rate * 100:.0f}%\n")
        print(f"{'TIME':<12} {'':1} {'EVENT':<10} {'KIND':<7} {'TASK':<24} DETAILS")
        print("-" * 80)
        try:
            await runner.run()
        except asyncio.CancelledError:
            runner.stop()
        finally:
            await runner.cleanup()
        print("-" * 80)
        print_final_summary(state, console)
        return

    stall_counter = 0
    last_done = 0
    interval = 0.1 if use_tui else 0.5
    stall_timeout_ticks = int(config.stall_timeout / interval) if config.stall_timeout else None
    display = SimulatorDisplay(state, console) if use_tui else None

    async def update_loop() -> None:
        """Refresh output periodically and detect stalls."""
        nonlocal stall_counter, last_done
        while True:
            done = state.completed + state.failed
            if done == last_done and state.queued > 0 and state.running == 0:
                stall_counter += 1
                if stall_counter * interval > 2:
                    state.blocked_info = runner.debug_blocked()
                if stall_timeout_ticks and stall_counter >= stall_timeout_ticks:
                    state.add_event("timeout", "system", None, f"Stalled for {config.stall_timeout}s")
                    runner.stop()
                    return
            else:
                stall_counter = 0
                state.blocked_info = []
            last_done = done

            if display is not None:
                display.refresh()
            else:
                print_simple_stats(state, console)
            await asyncio.sleep(interval)

    async def run_updating() -> None:
        update_task = asyncio.create_task(update_loop())
        try:
            await runner.run()
        except asyncio.CancelledError:
            runner.stop()
        finally:
            update_task.cancel()
            try:
                await update_task
            except asyncio.CancelledError:
                pass
            await runner.cleanup()

    if display is not None:
        with display:
            await run_updating()
    else:
        await run_updating()
        print()

    print_final_summary(state, console)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="vaultcue simulator - exercise the ingestion queue interactively",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vaultcue-sim --count 100 --latency 20
  vaultcue-sim --count 500 --latency 5 --concurrent 8
  vaultcue-sim --count 50 --error-rate 0.2 --duration 30
  vaultcue-sim --count 50 --churn 0.8 --verbose
        """,
    )
    parser.add_argument("--count", "-n", type=int, default=100,
                        help="Number of documents to ingest (default: 100)")
    parser.add_argument("--latency", "-l", type=int, default=20,
                        help="Embedding latency in ms (default: 20)")
    parser.add_argument("--jitter", "-j", type=float, default=0.2,
                        help="Latency variance as fraction, e.g. 0.2 = ±20%% (default: 0.2)")
    parser.add_argument("--error-rate", "-e", type=float, default=0.0,
                        help="Fraction of embedding calls that fail, 0.0-1.0 (default: 0.0)")
    parser.add_argument("--churn", type=float, default=0.2,
                        help="Chance of a follow-up update/delete per document (default: 0.2)")
    parser.add_argument("--concurrent", "-c", type=int, default=3,
                        help="Max concurrent tasks (default: 3)")
    parser.add_argument("--retries", type=int, default=3,
                        help="Max attempts per task (default: 3)")
    parser.add_argument("--chunk-size", type=int, default=1000,
                        help="Chunk size in characters (default: 1000)")
    parser.add_argument("--overlap", type=int, default=200,
                        help="Chunk overlap in characters (default: 200)")
    parser.add_argument("--db", type=str, default=":memory:",
                        help="SQLite database path (default: in-memory)")
    parser.add_argument("--duration", "-d", type=float, default=None,
                        help="Maximum duration in seconds (default: run until complete)")
    parser.add_argument("--submit-rate", "-s", type=float, default=None,
                        help="Documents submitted per second (default: batch)")
    parser.add_argument("--no-tui", action="store_true",
                        help="Disable TUI, use simple text output")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Print event log instead of status updates (no-tui)")
    parser.add_argument("--log-level", type=str, default=None,
                        help="Library log level with --verbose: debug, info, warn, error "
                             "(default: VAULTCUE_DEBUG__LOG_LEVEL or info)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for reproducible behavior (default: random)")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Auto-stop if stalled for N seconds (default: none)")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        debug = DebugSettings(log_level=args.log_level) if args.log_level else Settings().debug
    except ValidationError as e:
        parser.error(str(e))
    configure_logging(verbose=args.verbose, level=debug.log_level)

    if args.overlap >= args.chunk_size:
        parser.error("--overlap must be smaller than --chunk-size")

    config = SimConfig(
        count=args.count,
        latency_ms=args.latency,
        latency_jitter=args.jitter,
        error_rate=args.error_rate,
        churn=args.churn,
        duration=args.duration,
        db_path=args.db,
        max_concurrent=args.concurrent,
        max_retries=args.retries,
        chunk_size=args.chunk_size,
        chunk_overlap=args.overlap,
        min_chunk_size=min(100, args.chunk_size),
        submit_rate=args.submit_rate,
        stall_timeout=args.timeout,
        seed=args.seed,
    )

    async def run_main() -> None:
        """Wrapper to handle signals properly."""
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        main_task = asyncio.create_task(
            run_with_display(config, use_tui=not args.no_tui, verbose=args.verbose)
        )
        stop_task = asyncio.create_task(stop_event.wait())

        done, pending = await asyncio.wait(
            [main_task, stop_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if stop_task in done:
            print("\nInterrupted.")
            sys.exit(130)
        # Surface errors from the simulation itself
        main_task.result()

    try:
        asyncio.run(run_main())
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    main()
