"""Shared library code for Stackyard (errors, logging)."""
