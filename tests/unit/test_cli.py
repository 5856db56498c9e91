"""Unit tests for the knowledge CLI: argument parsing and subcommand handlers."""

from __future__ import annotations

import json
from argparse import Namespace
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from knowledge_engine.cli.knowledge import (
    _build_parser,
    _handle_add_url,
    _handle_delete,
    _handle_export,
    _handle_load,
    _handle_search,
    _handle_stats,
    main,
)
from knowledge_engine.config.settings import Settings
from knowledge_engine.models.knowledge import (
    AddKnowledgeResult,
    FragmentSearchResult,
    KnowledgeAnalytics,
    LoadError,
    LoadResult,
)
from knowledge_engine.utils.errors import EmbeddingFailedError


# ======================================================================
# Shared helpers
# ======================================================================


def _settings(**overrides) -> Settings:
    """Build a Settings instance with sensible test defaults."""
    defaults = {
        "openai_api_key": "",
        "anthropic_api_key": "",
        "ollama_base_url": "http://localhost:11434",
        "knowledge_path": "./docs",
        "app_env": "test",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def _mock_engine() -> MagicMock:
    engine = MagicMock()
    engine.search = AsyncMock(return_value=[])
    engine.add_knowledge_from_url = AsyncMock(
        return_value=AddKnowledgeResult(document_id="doc-9", fragment_count=4)
    )
    engine.get_analytics = AsyncMock(
        return_value=KnowledgeAnalytics(
            total_documents=2,
            total_fragments=7,
            storage_size=2048,
            content_types={"text/markdown": 1, "application/pdf": 1},
        )
    )
    engine.delete_document = AsyncMock(return_value=True)
    engine.export_knowledge = AsyncMock(return_value='{"documents": []}')
    engine.close = AsyncMock()
    return engine


# ======================================================================
# Parser
# ======================================================================


class TestParser:
    def test_search_defaults(self) -> None:
        args = _build_parser().parse_args(["search", "refund policy"])
        assert args.command == "search"
        assert args.query == "refund policy"
        assert args.limit == 20
        assert args.threshold == 0.5
        assert args.agent_id == "default"

    def test_agent_id_and_options(self) -> None:
        args = _build_parser().parse_args(
            ["--agent-id", "agent-7", "search", "q", "--limit", "5", "--threshold", "0.3"]
        )
        assert (args.agent_id, args.limit, args.threshold) == ("agent-7", 5, 0.3)

    def test_export_flags(self) -> None:
        args = _build_parser().parse_args(
            ["export", "--format", "markdown", "--include-fragments", "--no-metadata", "-o", "out.md"]
        )
        assert args.format == "markdown"
        assert args.include_fragments is True
        assert args.no_metadata is True
        assert args.output == "out.md"

    def test_invalid_export_format(self) -> None:
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["export", "--format", "xml"])

    def test_add_url_requires_url(self) -> None:
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["add-url"])


# ======================================================================
# Handlers
# ======================================================================


class TestHandlers:
    @pytest.mark.asyncio
    async def test_load_reports_failures(self, capsys) -> None:
        args = Namespace(agent_id="agent-1", path="./docs")
        result = LoadResult(
            successful=1, failed=1, errors=[LoadError(filename="bad.pdf", error="corrupt")]
        )

        with patch(
            "knowledge_engine.cli.knowledge.load_docs_from_path",
            new_callable=AsyncMock,
            return_value=result,
        ) as loader:
            code = await _handle_load(args, _mock_engine())

        assert code == 1
        loader.assert_awaited_once()
        out = capsys.readouterr().out
        assert "Successful: 1" in out
        assert "bad.pdf: corrupt" in out

    @pytest.mark.asyncio
    async def test_add_url(self, capsys) -> None:
        engine = _mock_engine()

        code = await _handle_add_url(Namespace(agent_id="agent-1", url="https://e.com/a.pdf"), engine)

        assert code == 0
        url, scope = engine.add_knowledge_from_url.await_args.args
        assert url == "https://e.com/a.pdf"
        assert scope.agent_id == "agent-1"
        out = capsys.readouterr().out
        assert "doc-9" in out
        assert "Already stored: no" in out

    @pytest.mark.asyncio
    async def test_search_prints_hits(self, capsys) -> None:
        engine = _mock_engine()
        engine.search.return_value = [
            FragmentSearchResult(
                fragment_id="f-1",
                document_id="doc-1",
                content="Refunds are processed within ten business days.",
                similarity=0.8123,
                position=2,
                metadata={"document_title": "Handbook"},
            )
        ]

        code = await _handle_search(
            Namespace(agent_id="agent-1", query="refunds", threshold=0.3, limit=5), engine
        )

        assert code == 0
        options = engine.search.await_args.args[1]
        assert (options.agent_id, options.threshold, options.limit) == ("agent-1", 0.3, 5)
        out = capsys.readouterr().out
        assert "[1] Handbook (fragment 2, similarity 0.812)" in out
        assert "ten business days" in out

    @pytest.mark.asyncio
    async def test_search_no_hits(self, capsys) -> None:
        code = await _handle_search(
            Namespace(agent_id="agent-1", query="nothing", threshold=0.5, limit=20), _mock_engine()
        )

        assert code == 0
        assert "No matching knowledge found." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_stats(self, capsys) -> None:
        code = await _handle_stats(Namespace(agent_id="agent-1"), _mock_engine())

        assert code == 0
        out = capsys.readouterr().out
        assert "Documents:    2" in out
        assert "Fragments:    7" in out
        assert "application/pdf" in out

    @pytest.mark.asyncio
    async def test_delete_with_yes(self, capsys) -> None:
        engine = _mock_engine()

        await _handle_delete(Namespace(document_id="doc-1", yes=True), engine)

        engine.delete_document.assert_awaited_once_with("doc-1")
        assert "Deleted document doc-1." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_delete_missing(self, capsys) -> None:
        engine = _mock_engine()
        engine.delete_document.return_value = False

        await _handle_delete(Namespace(document_id="doc-1", yes=True), engine)

        assert "not found" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_delete_aborted(self, capsys) -> None:
        engine = _mock_engine()

        with patch("builtins.input", return_value="n"):
            await _handle_delete(Namespace(document_id="doc-1", yes=False), engine)

        engine.delete_document.assert_not_awaited()
        assert "Aborted." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_export_to_file(self, tmp_path: Path) -> None:
        engine = _mock_engine()
        output = tmp_path / "export.json"

        await _handle_export(
            Namespace(
                agent_id="agent-1",
                format="json",
                no_metadata=True,
                include_fragments=False,
                output=str(output),
            ),
            engine,
        )

        assert json.loads(output.read_text()) == {"documents": []}
        engine.export_knowledge.assert_awaited_once_with(
            "agent-1", format="json", include_metadata=False, include_fragments=False
        )


# ======================================================================
# Entry point
# ======================================================================


class TestMain:
    def test_no_command_prints_help(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_dispatches_and_closes_engine(self, capsys) -> None:
        engine = _mock_engine()

        with (
            patch("knowledge_engine.cli.knowledge.Settings", return_value=_settings()),
            patch("knowledge_engine.cli.knowledge.configure_logging"),
            patch("knowledge_engine.main.create_engine", new=AsyncMock(return_value=engine)),
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["--agent-id", "agent-1", "stats"])

        assert exc_info.value.code == 0
        engine.close.assert_awaited_once()
        assert "Knowledge Statistics (agent-1)" in capsys.readouterr().out

    def test_load_defaults_to_configured_path(self) -> None:
        engine = _mock_engine()

        with (
            patch(
                "knowledge_engine.cli.knowledge.Settings",
                return_value=_settings(knowledge_path="/srv/docs"),
            ),
            patch("knowledge_engine.cli.knowledge.configure_logging"),
            patch("knowledge_engine.main.create_engine", new=AsyncMock(return_value=engine)),
            patch(
                "knowledge_engine.cli.knowledge.load_docs_from_path",
                new_callable=AsyncMock,
                return_value=LoadResult(successful=0),
            ) as loader,
            pytest.raises(SystemExit),
        ):
            main(["load"])

        assert loader.await_args.args[2] == "/srv/docs"

    def test_engine_error_exits_with_message(self, capsys) -> None:
        engine = _mock_engine()
        engine.search.side_effect = EmbeddingFailedError("provider down", provider_name="openai")

        with (
            patch("knowledge_engine.cli.knowledge.Settings", return_value=_settings()),
            patch("knowledge_engine.cli.knowledge.configure_logging"),
            patch("knowledge_engine.main.create_engine", new=AsyncMock(return_value=engine)),
            pytest.raises(SystemExit) as exc_info,
        ):
            main(["search", "anything"])

        assert exc_info.value.code == 1
        assert "Error: [openai] provider down" in capsys.readouterr().err
        engine.close.assert_awaited_once()
