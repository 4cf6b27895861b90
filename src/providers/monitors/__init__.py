"""Monitor provider implementations."""
