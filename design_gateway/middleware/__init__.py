"""
Middleware modules for FastAPI request processing.

This package contains middleware components for:
- Request ID propagation and structured request logging
"""
