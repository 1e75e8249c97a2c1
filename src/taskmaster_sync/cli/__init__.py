"""Command line interface for taskmaster-sync."""
