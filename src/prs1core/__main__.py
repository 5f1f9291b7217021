"""Entry point for ``python -m prs1core``."""

from prs1core.cli import cli

if __name__ == "__main__":
    cli()
