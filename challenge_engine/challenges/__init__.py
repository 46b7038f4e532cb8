"""Challenge catalog, participation state machines, rewards and lifecycle jobs."""
