"""Allow ``python -m evote_client``."""

from evote_client.cli.app import app

app()
