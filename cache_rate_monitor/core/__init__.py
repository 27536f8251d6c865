"""
Core modules for the cache rate monitor.

This package contains request correlation, the per-minute ring buffer,
anomaly rules and alert dispatch.
"""
