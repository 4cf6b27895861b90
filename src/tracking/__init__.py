"""File status tracking and error taxonomy."""
