"""Utilities package for the Bakehouse costing engine."""
