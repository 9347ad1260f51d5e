"""API package exports."""

from src.api.middleware import CorrelationIdMiddleware
from src.api.routes import router

__all__ = ["router", "CorrelationIdMiddleware"]
