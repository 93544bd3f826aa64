"""Data models shared across the capture engine, store and CLI."""
