"""Entry point for `python -m kone`."""

from kone.cli import app

app()
