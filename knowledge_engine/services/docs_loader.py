"""Bulk loading of a documents folder into the knowledge base.

Walks a directory tree, maps each file extension to a MIME type, reads text
formats as UTF-8 and base64-encodes binary formats, then hands every file to
:meth:`KnowledgeEngine.add_knowledge`.

Identities are derived from the agent, the file's path relative to the
root, and its content hash, so reloading an unchanged folder is a no-op
and an edited file is ingested as a new document.
"""

from __future__ import annotations

import asyncio
import base64
from pathlib import Path

import structlog

from knowledge_engine.models.knowledge import AddKnowledgeOptions, LoadError, LoadResult
from knowledge_engine.services.knowledge_engine import KnowledgeEngine
from knowledge_engine.utils.errors import KnowledgeEngineError
from knowledge_engine.utils.identity import content_hash

logger = structlog.get_logger(logger_name=__name__)

# Extension -> (MIME type, is_binary)
SUPPORTED_EXTENSIONS: dict[str, tuple[str, bool]] = {
    ".txt": ("text/plain", False),
    ".md": ("text/markdown", False),
    ".markdown": ("text/markdown", False),
    ".csv": ("text/csv", False),
    ".json": ("application/json", False),
    ".xml": ("application/xml", False),
    ".yaml": ("application/x-yaml", False),
    ".yml": ("application/x-yaml", False),
    ".html": ("text/html", False),
    ".htm": ("text/html", False),
    ".rtf": ("application/rtf", False),
    ".py": ("text/x-python", False),
    ".js": ("text/javascript", False),
    ".ts": ("text/x-typescript", False),
    ".pdf": ("application/pdf", True),
    ".docx": (
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        True,
    ),
}


def _collect_files(root: Path) -> list[Path]:
    """Return supported files under *root*, skipping hidden entries."""
    files: list[Path] = []
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if any(part.startswith(".") for part in relative.parts):
            continue
        if path.is_file() and path.suffix.lower() in SUPPORTED_EXTENSIONS:
            files.append(path)
    return files


def _read_file(path: Path, is_binary: bool) -> str:
    data = path.read_bytes()
    if is_binary:
        return base64.b64encode(data).decode("ascii")
    return data.decode("utf-8", errors="replace")


async def load_docs_from_path(
    engine: KnowledgeEngine,
    agent_id: str,
    path: str | Path,
) -> LoadResult:
    """Ingest every supported file under *path* for *agent_id*.

    Files are processed one at a time.  A failure in one file is recorded
    in the result and does not stop the rest of the load.

    Parameters
    ----------
    engine:
        The engine that performs the ingestion.
    agent_id:
        Agent that owns the loaded documents.
    path:
        Root directory to walk.

    Returns
    -------
    LoadResult
        Counts of successful and failed files plus per-file errors.  A
        missing directory yields an empty result.
    """
    root = Path(path)
    if not root.is_dir():
        logger.warning("docs_path_not_found", path=str(root))
        return LoadResult()

    files = await asyncio.to_thread(_collect_files, root)
    logger.info("docs_load_started", path=str(root), files=len(files), agent_id=agent_id)

    successful = 0
    errors: list[LoadError] = []
    for file_path in files:
        relative = file_path.relative_to(root).as_posix()
        content_type, is_binary = SUPPORTED_EXTENSIONS[file_path.suffix.lower()]
        try:
            content = await asyncio.to_thread(_read_file, file_path, is_binary)
            result = await engine.add_knowledge(
                AddKnowledgeOptions(
                    agent_id=agent_id,
                    client_document_id=f"docs:{relative}:{content_hash(content)}",
                    content_type=content_type,
                    original_filename=file_path.name,
                    content=content,
                    metadata={"source": "docs", "path": relative},
                )
            )
        except (KnowledgeEngineError, OSError) as exc:
            logger.warning("docs_file_failed", file=relative, error=str(exc))
            errors.append(LoadError(filename=relative, error=str(exc)))
            continue

        successful += 1
        logger.debug(
            "docs_file_loaded",
            file=relative,
            document_id=result.document_id,
            fragment_count=result.fragment_count,
            already_existed=result.already_existed,
        )

    logger.info(
        "docs_load_complete",
        path=str(root),
        successful=successful,
        failed=len(errors),
    )
    return LoadResult(successful=successful, failed=len(errors), errors=errors)
