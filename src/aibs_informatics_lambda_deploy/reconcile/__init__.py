"""Reconciliation of a single region's function and bindings with the desired state."""
