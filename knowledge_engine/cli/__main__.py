"""Allow ``python -m knowledge_engine.cli`` execution."""

from knowledge_engine.cli.knowledge import main

main()
