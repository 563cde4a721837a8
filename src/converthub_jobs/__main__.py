"""Entry points: ``python -m converthub_jobs`` runs the CLI, ``converthub-webhook`` its ``serve`` command."""

import sys

from .cli import app


def main():
    """Run the webhook receiver."""
    app(["serve", *sys.argv[1:]], prog_name="converthub-webhook")


if __name__ == "__main__":
    app(prog_name="converthub")
