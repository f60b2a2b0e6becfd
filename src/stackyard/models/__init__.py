"""Pydantic models for applications, events, manifests and configuration."""
