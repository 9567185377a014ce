"""Queue-driven skill worker for autonomous CLI agents."""

__version__ = "0.1.0"
