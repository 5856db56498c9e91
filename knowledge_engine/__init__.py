"""Knowledge engine: document ingestion and semantic retrieval for agents."""
