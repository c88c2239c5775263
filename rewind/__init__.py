"""Rewind - content sync and summarization pipeline."""
