"""Infrastructure: database access and the periodic scheduler."""
