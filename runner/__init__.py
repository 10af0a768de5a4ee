"""Smoke client for a running file server (httpx)."""
