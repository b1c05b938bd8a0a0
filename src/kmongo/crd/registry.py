"""CRD Registry system for automatic CRD discovery."""

import importlib
import pkgutil
import logging

logger = logging.getLogger(__name__)


class CRDRegistry:
    """Global registry for CRD models with auto-discovery."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._models = {}
        return cls._instance

    @classmethod
    def register(cls, group, version, kind, plural=None, scope="Namespaced", status=None):
        """Decorator to register CRD spec models.

        Args:
            group: API group (e.g., 'middleware.fedstate.io')
            version: API version (e.g., 'v1alpha1')
            kind: Kind name (e.g., 'MongoDB')
            plural: Plural name (defaults to kind.lower() + 's')
            scope: 'Namespaced' or 'Cluster'
            status: pydantic model used for the status subresource schema
        """

        def decorator(model_class):
            if not hasattr(model_class, "__annotations__"):
                raise ValueError(
                    f"CRD model {model_class.__name__} must have type annotations"
                )

            model_class._crd_group = group
            model_class._crd_version = version
            model_class._crd_kind = kind
            model_class._crd_plural = plural or f"{kind.lower()}s"
            model_class._crd_scope = scope

            registry_instance = cls()
            key = f"{group}/{version}/{kind}"

            registry_instance._models[key] = {
                "model": model_class,
                "status": status,
                "group": group,
                "version": version,
                "kind": kind,
                "plural": model_class._crd_plural,
                "scope": scope,
                "singular": kind.lower(),
            }

            logger.debug(f"Registered CRD: {key}")
            return model_class

        return decorator

    def discover_models(self, package_paths=None):
        """Import every module of the given packages so their decorators run."""
        if package_paths is None:
            package_paths = ["kmongo.models"]

        for package_path in package_paths:
            try:
                package = importlib.import_module(package_path)
            except ImportError as e:
                logger.warning(f"Could not discover models in {package_path}: {e}")
                continue

            if hasattr(package, "__path__"):
                for _, module_name, _ in pkgutil.iter_modules(package.__path__):
                    full_module_name = f"{package_path}.{module_name}"
                    importlib.import_module(full_module_name)
                    logger.debug(f"Discovered models in {full_module_name}")

    def get_all_models(self):
        """Get all registered CRD models."""
        return self._models.copy()

    def get_model_by_key(self, group, version, kind):
        """Get a specific CRD model by its key."""
        return self._models.get(f"{group}/{version}/{kind}")
