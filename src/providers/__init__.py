"""Storage, monitor and notification providers."""
