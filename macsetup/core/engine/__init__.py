"""Reconciliation engine: probe, verify, execute, reconcile."""
