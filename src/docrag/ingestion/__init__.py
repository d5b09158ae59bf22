"""Document decoding and ingestion pipelines."""
