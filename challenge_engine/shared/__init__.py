"""Shared utilities, schemas and collaborator clients."""
