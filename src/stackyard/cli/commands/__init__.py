"""Stackyard CLI commands."""
