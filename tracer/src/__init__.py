"""
Solar tracer acquisition daemon.

Reads line-delimited telemetry from a solar charge controller over a serial
port, persists every sample to a local SQLite store in batches, and exposes
the live sample stream plus a load on/off command channel to a presentation
layer.

CHANGELOG:
- 2026-10-19: Initial creation
"""
