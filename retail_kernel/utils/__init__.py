"""Utility functions for the retail kernel."""
