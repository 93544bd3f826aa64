"""Capture-run monitoring: event bus and sinks."""
