"""Backend for the mediagrab download service.

This package keeps the FastAPI route handlers in server.py thin:
- per-session download folders, TTL sweeps and per-owner quota
- retrying provider calls and concurrent, size-capped media downloads
- ZIP bundles of staged files and range-aware, traversal-safe serving

Security note:
Session IDs are capability tokens (random UUID4). Anyone holding one can read
that session's files, so never expose filesystem paths in responses.
"""
