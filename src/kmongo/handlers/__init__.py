"""Handler modules for the kmongo operator."""

from . import mongodb_handler

__all__ = ["mongodb_handler"]
