"""Custom resource models served by the operator."""
