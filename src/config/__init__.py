"""Deployment settings."""
