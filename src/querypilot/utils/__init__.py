"""Utility modules for querypilot."""
