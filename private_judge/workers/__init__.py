"""Polling workers that execute queued jobs."""
