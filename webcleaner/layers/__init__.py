"""Cleaning layers - sense, synthesis, targeting and reconciliation."""
