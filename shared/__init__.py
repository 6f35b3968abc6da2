"""Shared helpers used across FieldSync packages."""
