"""Topology modes.

Importing this package registers the built-in modes.
"""

from .base import MongoInstance
from .registry import ModeRegistry
from . import replica  # noqa: F401
