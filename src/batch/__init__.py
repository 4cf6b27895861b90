"""Batch orchestration: admission, workers, configuration management."""
