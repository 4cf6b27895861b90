"""Core domain models, errors and clocks."""
