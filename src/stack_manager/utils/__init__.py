"""Utility helpers: naming policy, host-aware configuration, Kubernetes clients."""
