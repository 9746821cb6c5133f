"""Entry point for ``python -m coldbucket``."""

from coldbucket.cli import cli

if __name__ == "__main__":
    cli()
