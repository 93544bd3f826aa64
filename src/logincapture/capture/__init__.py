"""Capture/resolution engine.

Signals flow ``Probe -> Bridge -> {CaptureStateMachine, CompletionGuard}``
and end in a single host callback. ``CaptureEngine`` wires one run.
"""
