"""CLI - Command-line interface."""
