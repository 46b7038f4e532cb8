"""Clients for the engine's external collaborators."""
