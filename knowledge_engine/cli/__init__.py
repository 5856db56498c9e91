# =============================================================================
# knowledge_engine/cli/__init__.py: CLI Module Overview
# =============================================================================
#
# Command-line access to the knowledge engine for operators and developers
# working outside an embedding application.  One module, knowledge.py,
# exposes every workflow as an argparse subcommand:
#
#   load     bulk-load a documents folder
#   add-url  fetch and ingest a single URL
#   search   similarity search over an agent's fragments
#   stats    document / fragment totals per agent
#   delete   remove a document and its fragments
#   export   dump an agent's documents as JSON, CSV or Markdown
#
# Architecture Notes:
#   - argparse, no third-party CLI framework.
#   - The engine is assembled by knowledge_engine.main.create_engine, the
#     same composition root an embedding application uses, so the CLI
#     writes to the same store with the same embedding model.
# =============================================================================

"""CLI tools for the knowledge engine.

- ``python -m knowledge_engine.cli load --path ./docs``
- ``python -m knowledge_engine.cli search "what is the refund policy?"``
"""
