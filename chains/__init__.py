"""Upstream JSON-RPC client."""
