"""
Entrypoint for running jobsync as a module.

Usage:
    python -m jobsync_cli sync [OPTIONS]
"""

from jobsync_cli.cli import cli

if __name__ == "__main__":
    cli()
