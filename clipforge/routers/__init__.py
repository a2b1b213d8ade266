"""
FastAPI routers for Clipforge.
"""

from clipforge.routers import health, highlights, render

__all__ = ["health", "highlights", "render"]
