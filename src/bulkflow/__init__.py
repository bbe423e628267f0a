"""Poll-driven orchestration of asynchronous bulk-data API workflows."""

__version__ = "0.1.0"
