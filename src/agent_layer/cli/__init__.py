"""Command-line entry point for al."""
