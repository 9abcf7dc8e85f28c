"""Service objects wired onto the application at startup."""
