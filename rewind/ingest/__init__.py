"""Ingestion - feed fetching, text extraction and normalization."""
