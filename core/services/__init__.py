"""Core services operating on the ingestion store."""
