"""
Tests for the Operator CLI
==========================

Version: 0.1.0
"""

import pytest

from services.regulatory_truth.cli import (
    COMMANDS,
    EXIT_CONFIG,
    EXIT_FAILURES,
    EXIT_OK,
    build_parser,
    run_command,
)
from services.regulatory_truth.errors import ConfigurationError
from services.regulatory_truth.pipeline import RegulatoryTruthPipeline
from services.regulatory_truth.storage import InMemoryRegulatoryStore, InMemoryRuleStore
from tests.factories import RecordingSink


class FactorySpy:
    """Pipeline factory that hands out a prepared pipeline."""

    def __init__(self, pipeline: RegulatoryTruthPipeline | None = None) -> None:
        self.pipeline = pipeline
        self.calls: list[bool] = []

    async def __call__(self, require_provider: bool) -> RegulatoryTruthPipeline:
        self.calls.append(require_provider)
        if self.pipeline is None:
            raise ConfigurationError("MongoDB unreachable: connection refused")
        return self.pipeline


class TestParser:
    """Tests for argument parsing."""

    def test_every_command_is_registered(self) -> None:
        """Test that each command has a subparser."""
        parser = build_parser()

        for command in COMMANDS:
            args = parser.parse_args([command, "rule_1"] if command == "publish" else [command])
            assert args.command == command

    def test_repeatable_evidence(self) -> None:
        """Test the repeatable --evidence option."""
        args = build_parser().parse_args(["extract", "--evidence", "ev_1", "--evidence", "ev_2", "--limit", "5"])

        assert args.evidence == ["ev_1", "ev_2"]
        assert args.limit == 5

    def test_publish_requires_rule_ids(self) -> None:
        """Test that publish without ids is a usage error."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["publish"])

    def test_command_is_required(self) -> None:
        """Test that a command must be given."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRunCommand:
    """Tests for command execution and exit codes."""

    @pytest.mark.asyncio
    async def test_seed(
        self,
        pipeline: RegulatoryTruthPipeline,
        regulatory_store: InMemoryRegulatoryStore,
    ) -> None:
        """Test that seeding succeeds and populates the store."""
        factory = FactorySpy(pipeline)

        code = await run_command(build_parser().parse_args(["seed"]), factory)

        assert code == EXIT_OK
        assert factory.calls == [False]
        assert len(await regulatory_store.list_sources()) > 0

    @pytest.mark.asyncio
    async def test_configuration_error(self) -> None:
        """Test that an unbuildable pipeline exits with the configuration code."""
        code = await run_command(build_parser().parse_args(["sentinel"]), FactorySpy())

        assert code == EXIT_CONFIG

    @pytest.mark.asyncio
    async def test_extract_requests_provider(self) -> None:
        """Test that the extract command asks for a provider."""
        factory = FactorySpy()

        await run_command(build_parser().parse_args(["extract"]), factory)

        assert factory.calls == [True]

    @pytest.mark.asyncio
    async def test_extract_without_provider(
        self,
        regulatory_store: InMemoryRegulatoryStore,
        rule_store: InMemoryRuleStore,
    ) -> None:
        """Test that extraction without a provider is a configuration error."""
        pipeline = RegulatoryTruthPipeline(regulatory_store, rule_store, sinks=[])

        code = await run_command(build_parser().parse_args(["extract"]), FactorySpy(pipeline))

        assert code == EXIT_CONFIG

    @pytest.mark.asyncio
    async def test_blocked_publish(self, pipeline: RegulatoryTruthPipeline) -> None:
        """Test that a blocked rule gives the failure code."""
        code = await run_command(build_parser().parse_args(["publish", "rule_missing"]), FactorySpy(pipeline))

        assert code == EXIT_FAILURES

    @pytest.mark.asyncio
    async def test_unknown_source(self, pipeline: RegulatoryTruthPipeline) -> None:
        """Test that a pipeline error gives the failure code."""
        args = build_parser().parse_args(["sentinel", "--source", "src_missing"])

        assert await run_command(args, FactorySpy(pipeline)) == EXIT_FAILURES

    @pytest.mark.asyncio
    async def test_empty_sentinel_run(self, pipeline: RegulatoryTruthPipeline) -> None:
        """Test that a run with nothing due succeeds."""
        code = await run_command(build_parser().parse_args(["sentinel"]), FactorySpy(pipeline))

        assert code == EXIT_OK

    @pytest.mark.asyncio
    async def test_digest(self, pipeline: RegulatoryTruthPipeline, sink: RecordingSink) -> None:
        """Test that the digest is delivered."""
        code = await run_command(build_parser().parse_args(["digest"]), FactorySpy(pipeline))

        assert code == EXIT_OK
        assert len(sink.digests) == 1

    @pytest.mark.asyncio
    async def test_resolve_without_conflicts(self, pipeline: RegulatoryTruthPipeline) -> None:
        """Test that there is nothing to resolve."""
        code = await run_command(build_parser().parse_args(["resolve-conflicts"]), FactorySpy(pipeline))

        assert code == EXIT_OK
