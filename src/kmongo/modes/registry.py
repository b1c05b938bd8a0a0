"""Registry mapping spec.type to a topology mode."""

import logging

from kmongo.errors import UnknownTopology

from .base import MongoInstance

logger = logging.getLogger(__name__)


class ModeRegistry:
    """Global registry of topology modes."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._modes = {}
        return cls._instance

    @classmethod
    def register(cls, mode_type):
        """Decorator registering a MongoInstance subclass for a spec.type value."""

        def decorator(mode_class):
            if not issubclass(mode_class, MongoInstance):
                raise ValueError(f"Mode {mode_class.__name__} must inherit from MongoInstance")
            registry_instance = cls()
            if mode_type in registry_instance._modes:
                logger.warning(
                    f"Mode {mode_type} already registered by "
                    f"{registry_instance._modes[mode_type].__name__}, replacing"
                )
            registry_instance._modes[mode_type] = mode_class
            logger.debug(f"Registered topology mode: {mode_type}")
            return mode_class

        return decorator

    def get_mode(self, mode_type):
        mode_class = self._modes.get(mode_type)
        if mode_class is None:
            raise UnknownTopology(
                f"unknown topology type {mode_type!r}, known: {self.list_mode_names()}"
            )
        return mode_class

    def create(self, base):
        """Mode instance for the CR held by base."""
        return self.get_mode(base.cr.spec.type)(base)

    def list_mode_names(self):
        return sorted(self._modes)
