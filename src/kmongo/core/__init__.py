"""Replica set reconcile core."""
