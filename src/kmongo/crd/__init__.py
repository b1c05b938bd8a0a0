"""CRD models, registry and generation."""

from .base import CRDSpec, CRDStatus, CRDCondition, CRDMetadata
from .registry import CRDRegistry
