"""
Middleware and exception handler wiring
"""
from .error_handler import register_exception_handlers, database_error_handler

__all__ = ["register_exception_handlers", "database_error_handler"]
