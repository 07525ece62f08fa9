"""Scan & Go analytics: per-device quotas and event-log metrics."""
