"""Subcommands of the ``prpal`` group."""
