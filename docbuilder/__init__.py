"""
Documentation build service: build queue, database pool and Prometheus metrics.
"""

__version__ = "0.1.0"
