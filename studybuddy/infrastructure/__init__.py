"""Infrastructure layer: logging, scheduling, persistence, error handling, monitoring and health."""
