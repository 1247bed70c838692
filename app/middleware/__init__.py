"""
Middleware package for MediaRelay API.

This package contains middleware components for error handling and
request processing.
"""

from .error_handler import ErrorHandlingMiddleware, register_exception_handlers

__all__ = ['ErrorHandlingMiddleware', 'register_exception_handlers']
