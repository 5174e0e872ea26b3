"""Smoke test for a browser debugging endpoint exposed through a reverse proxy."""
