"""Kubernetes-facing services."""
