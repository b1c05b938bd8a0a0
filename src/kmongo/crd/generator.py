"""CRD generation from the registered pydantic models."""

import hashlib
import json
import logging
from pathlib import Path

import yaml
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from .registry import CRDRegistry

logger = logging.getLogger(__name__)


class OpenAPIConverter:
    """Convert pydantic schemas to OpenAPI v3 compatible schemas for CRDs."""

    @staticmethod
    def convert_schema(pydantic_schema):
        """Convert pydantic JSON schema to OpenAPI v3 schema for Kubernetes CRDs."""
        openapi_schema = {"type": "object", "properties": {}}
        defs = pydantic_schema.get("$defs", {})

        if "properties" in pydantic_schema:
            openapi_schema["properties"] = OpenAPIConverter._convert_properties(
                pydantic_schema["properties"], defs
            )

        if "required" in pydantic_schema:
            openapi_schema["required"] = pydantic_schema["required"]

        return openapi_schema

    @staticmethod
    def _convert_properties(properties, defs):
        return {
            name: OpenAPIConverter._convert_property(schema, defs)
            for name, schema in properties.items()
        }

    @staticmethod
    def _convert_property(prop_schema, defs):
        """Convert a single property schema."""
        if "$ref" in prop_schema:
            def_name = prop_schema["$ref"].replace("#/$defs/", "")
            if def_name in defs:
                converted = OpenAPIConverter._convert_property(defs[def_name], defs)
                if "description" in prop_schema:
                    converted["description"] = prop_schema["description"]
                return converted

        # Optional[X] comes out as anyOf [X, null]
        if "anyOf" in prop_schema:
            options = [o for o in prop_schema["anyOf"] if o.get("type") != "null"]
            if len(options) == 1:
                converted = OpenAPIConverter._convert_property(options[0], defs)
                if "description" in prop_schema:
                    converted["description"] = prop_schema["description"]
                if prop_schema.get("default") is not None:
                    converted["default"] = prop_schema["default"]
                return converted

        if prop_schema.get("type") == "array":
            converted = {"type": "array"}
            if "items" in prop_schema:
                converted["items"] = OpenAPIConverter._convert_property(
                    prop_schema["items"], defs
                )
            if "description" in prop_schema:
                converted["description"] = prop_schema["description"]
            return converted

        if prop_schema.get("type") == "object":
            converted = {"type": "object"}
            if "properties" in prop_schema:
                converted["properties"] = OpenAPIConverter._convert_properties(
                    prop_schema["properties"], defs
                )
                if "required" in prop_schema:
                    converted["required"] = prop_schema["required"]
            else:
                converted["x-kubernetes-preserve-unknown-fields"] = True
            if "description" in prop_schema:
                converted["description"] = prop_schema["description"]
            return converted

        result = {}
        for key in ("type", "format", "description", "default", "enum", "minimum", "maximum"):
            if key in prop_schema:
                result[key] = prop_schema[key]

        if not result.get("type"):
            result["x-kubernetes-preserve-unknown-fields"] = True
            result.pop("default", None)

        return result


class CRDManager:
    """Generates CRD manifests and applies them to the cluster."""

    def __init__(self, output_dir=None):
        self.output_dir = Path(output_dir or "crds/generated")
        self.registry = CRDRegistry()
        self.converter = OpenAPIConverter()

    def generate_all_crds(self, force=False):
        """Write CRD YAML files, skipping when the models are unchanged.

        Returns:
            bool: True if CRDs were generated, False if no changes needed
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)

        current_hash = self._calculate_models_hash()
        hash_file = self.output_dir / ".models_hash"

        if not force and hash_file.exists():
            if hash_file.read_text().strip() == current_hash:
                logger.info("CRD models unchanged, skipping generation")
                return False

        crds = self.get_crds_as_dict()
        if not crds:
            logger.warning("No CRD models found to generate")
            return False

        generated_files = []
        for crd_name, crd_def in crds.items():
            filename = f"{crd_name}.yaml"
            with open(self.output_dir / filename, "w") as f:
                yaml.dump(crd_def, f, default_flow_style=False, sort_keys=False)
            generated_files.append(filename)
            logger.info(f"Generated CRD: {filename}")

        kustomization = {
            "apiVersion": "kustomize.config.k8s.io/v1beta1",
            "kind": "Kustomization",
            "resources": sorted(generated_files),
        }
        with open(self.output_dir / "kustomization.yaml", "w") as f:
            yaml.dump(kustomization, f, default_flow_style=False)

        hash_file.write_text(current_hash)
        logger.info(f"Generated {len(generated_files)} CRD files")
        return True

    def generate_crd_definition(self, model_info):
        """Build one CustomResourceDefinition document."""
        model_class = model_info["model"]
        plural = model_info["plural"]
        group = model_info["group"]
        singular = model_info["singular"]

        spec_schema = self.converter.convert_schema(model_class.model_json_schema())
        status_schema = {"type": "object", "x-kubernetes-preserve-unknown-fields": True}
        if model_info.get("status") is not None:
            status_schema = self.converter.convert_schema(
                model_info["status"].model_json_schema()
            )
            status_schema["x-kubernetes-preserve-unknown-fields"] = True

        return {
            "apiVersion": "apiextensions.k8s.io/v1",
            "kind": "CustomResourceDefinition",
            "metadata": {"name": f"{plural}.{group}"},
            "spec": {
                "group": group,
                "versions": [
                    {
                        "name": model_info["version"],
                        "served": True,
                        "storage": True,
                        "schema": {
                            "openAPIV3Schema": {
                                "type": "object",
                                "properties": {
                                    "spec": spec_schema,
                                    "status": status_schema,
                                },
                                "required": ["spec"],
                            }
                        },
                        "subresources": {"status": {}},
                        "additionalPrinterColumns": [
                            {"name": "State", "type": "string", "jsonPath": ".status.state"},
                            {"name": "Members", "type": "integer", "jsonPath": ".spec.members"},
                            {"name": "Age", "type": "date", "jsonPath": ".metadata.creationTimestamp"},
                        ],
                    }
                ],
                "scope": model_info["scope"],
                "names": {
                    "plural": plural,
                    "singular": singular,
                    "kind": model_info["kind"],
                    "shortNames": [singular[:3]],
                },
            },
        }

    def get_crds_as_dict(self):
        """All CRDs as in-memory documents keyed by CRD name."""
        self.registry.discover_models()
        crds = {}
        for model_info in self.registry.get_all_models().values():
            crd_def = self.generate_crd_definition(model_info)
            crds[crd_def["metadata"]["name"]] = crd_def
        return crds

    def apply_crds_to_cluster(self):
        """Create or replace every CRD in the connected cluster.

        Returns:
            bool: True if at least one CRD was applied
        """
        api_client = client.ApiextensionsV1Api()

        applied_count = 0
        for crd_name, crd_def in self.get_crds_as_dict().items():
            try:
                existing = api_client.read_custom_resource_definition(crd_name)
                crd_def["metadata"]["resourceVersion"] = existing.metadata.resource_version
                api_client.replace_custom_resource_definition(name=crd_name, body=crd_def)
                logger.info(f"Updated CRD: {crd_name}")
            except ApiException as e:
                if e.status != 404:
                    logger.error(f"Failed to apply CRD {crd_name}: {e}")
                    continue
                api_client.create_custom_resource_definition(body=crd_def)
                logger.info(f"Created CRD: {crd_name}")
            applied_count += 1

        logger.info(f"Applied {applied_count} CRDs to cluster")
        return applied_count > 0

    def validate_generated_crds(self):
        """Check that every generated file is a CustomResourceDefinition."""
        crd_files = [
            f for f in self.output_dir.glob("*.yaml") if f.name != "kustomization.yaml"
        ]
        if not crd_files:
            logger.error("No CRD files found to validate")
            return False

        valid_count = 0
        for crd_file in crd_files:
            with open(crd_file, "r") as f:
                crd_def = yaml.safe_load(f)
            if not isinstance(crd_def, dict):
                logger.error(f"Invalid YAML in {crd_file}")
                continue
            if crd_def.get("kind") != "CustomResourceDefinition":
                logger.error(f"Not a CRD: {crd_file}")
                continue
            valid_count += 1

        logger.info(f"Validated {valid_count}/{len(crd_files)} CRD files")
        return valid_count == len(crd_files)

    def _calculate_models_hash(self):
        """Hash of all model schemas for change detection."""
        model_json = json.dumps(self.get_crds_as_dict(), sort_keys=True, default=str)
        return hashlib.sha256(model_json.encode()).hexdigest()
