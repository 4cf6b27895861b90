"""Notification provider implementations."""
