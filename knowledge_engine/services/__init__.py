"""Business-logic services: extraction, chunking, embedding and the engine."""
