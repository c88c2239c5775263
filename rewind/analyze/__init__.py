"""Summarization: prompts, Summarizer, state machine and work queue."""
