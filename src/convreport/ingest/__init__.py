"""Queue and object-store ingestion, subscription and dedup filters."""
