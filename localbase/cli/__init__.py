"""Operator CLI for a local data directory."""
