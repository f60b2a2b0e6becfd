"""Command line interface for Stackyard."""
