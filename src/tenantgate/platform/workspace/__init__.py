"""Tenant-scoped workspace entities and their routes."""
