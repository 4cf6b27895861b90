"""Configuration and job/record persistence."""
