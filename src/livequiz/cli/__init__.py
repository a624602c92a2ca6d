"""Command-line interface for livequiz."""
