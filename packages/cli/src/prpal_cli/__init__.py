"""Command-line interface for prpal."""
