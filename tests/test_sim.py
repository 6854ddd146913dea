"""Tests for the simulator runner and display."""

import io
import logging
import random

import pytest
from rich.console import Console

from vaultcue import EmbeddingError, extract_metadata
from vaultcue_sim.cli import build_parser, configure_logging, main
from vaultcue_sim.display import SimulationState, SimulatorDisplay, print_final_summary
from vaultcue_sim.runner import MockEmbedder, SimConfig, SimulationRunner, make_document


class TestRunner:
    """Tests for complete simulation runs."""

    async def test_run_to_completion(self):
        config = SimConfig(count=12, latency_ms=0, churn=0.5, seed=3, paragraphs=3)
        state = SimulationState()

        await SimulationRunner(config, state).run()

        assert state.submitted >= 12
        assert state.failed == 0
        assert state.completed + state.cancelled == state.submitted
        assert state.embed_calls > 0
        assert state.events

    async def test_failures_are_retried(self):
        config = SimConfig(
            count=5, latency_ms=0, error_rate=1.0, churn=0.0,
            max_retries=2, retry_delay=0.01, seed=1, paragraphs=2,
        )
        state = SimulationState()

        await SimulationRunner(config, state).run()

        assert state.failed == 5
        assert state.completed == 0
        assert state.error_log == 10

    def test_documents_are_reproducible(self):
        assert make_document(random.Random(5), 4) == make_document(random.Random(5), 4)

    def test_documents_carry_tags(self):
        meta = extract_metadata("a.md", make_document(random.Random(5), 4))

        assert len(meta.tags) >= 2
        assert set(meta.frontmatter["tags"]) <= set(meta.tags)

    async def test_mock_embedder_failure(self):
        embedder = MockEmbedder(SimConfig(latency_ms=0, error_rate=1.0), random.Random(0))

        with pytest.raises(EmbeddingError):
            await embedder.embed("text")
        assert embedder.calls == 1

    async def test_mock_embedder_vector(self):
        embedder = MockEmbedder(SimConfig(latency_ms=0), random.Random(0), dimensions=4)

        first = await embedder.embed("same text")
        second = await embedder.embed("same text")

        assert first == second
        assert len(first) == 4


class TestDisplay:
    def test_layout_renders(self):
        state = SimulationState(submitted=4, completed=2, running=1, max_concurrent=3)
        state.add_event("completed", "notes/a.md", "create")
        console = Console(file=io.StringIO(), width=120)

        console.print(SimulatorDisplay(state, console)._build_layout())

        assert "vaultcue-sim" in console.file.getvalue()

    def test_event_log_is_trimmed(self):
        state = SimulationState(max_events=3)

        for i in range(5):
            state.add_event("queued", f"{i}.md")

        assert [e.task_id for e in state.events] == ["4.md", "3.md", "2.md"]

    def test_final_summary(self):
        state = SimulationState(submitted=3, completed=3, elapsed=1.5)
        console = Console(file=io.StringIO(), width=100)

        print_final_summary(state, console)

        output = console.file.getvalue()
        assert "Simulation Results" in output
        assert "Throughput" in output


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args([])

        assert args.count == 100
        assert args.concurrent == 3
        assert args.chunk_size == 1000
        assert args.overlap == 200
        assert not args.no_tui

    def test_flags(self):
        args = build_parser().parse_args([
            "--count", "5", "--error-rate", "0.1", "--churn", "0.9",
            "--no-tui", "--seed", "42", "--db", "sim.db",
        ])

        assert args.count == 5
        assert args.error_rate == 0.1
        assert args.churn == 0.9
        assert args.no_tui
        assert args.seed == 42
        assert args.db == "sim.db"

    def test_log_level_flag(self):
        assert build_parser().parse_args([]).log_level is None
        assert build_parser().parse_args(["--log-level", "warn"]).log_level == "warn"


class TestLogging:
    """Tests for simulator logging setup."""

    def test_verbose_uses_log_level(self):
        vaultcue_logger = logging.getLogger("vaultcue")
        handlers = list(vaultcue_logger.handlers)
        try:
            configure_logging(verbose=True, level="warn")

            assert vaultcue_logger.level == logging.WARNING
        finally:
            vaultcue_logger.handlers[:] = handlers
            vaultcue_logger.setLevel(logging.NOTSET)

    def test_quiet_without_verbose(self):
        vaultcue_logger = logging.getLogger("vaultcue")
        try:
            configure_logging(verbose=False, level="debug")

            assert vaultcue_logger.level == logging.CRITICAL
        finally:
            vaultcue_logger.setLevel(logging.NOTSET)

    def test_unknown_level_rejected(self):
        with pytest.raises(SystemExit):
            main(["--log-level", "loud", "--no-tui", "--count", "1"])
