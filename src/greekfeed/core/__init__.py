"""Core models, expiry handling, tick normalization and feed ingestion."""
