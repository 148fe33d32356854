"""Runtime configuration resolved from the environment."""
