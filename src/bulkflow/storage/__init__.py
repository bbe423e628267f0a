"""Durable storage for queued work entries."""
