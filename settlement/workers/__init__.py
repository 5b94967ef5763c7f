"""Background and command-line entry points."""
