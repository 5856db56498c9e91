"""Utility modules: logging, errors, retries, rate limiting, identities."""
