# Overview: Flask extension instances for the local store, migrations, and the ledger gateway.

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def get_ledger():
    """Ledger client bound to the current app (see create_app)."""
    return current_app.extensions["ledger_client"]


def get_connectivity():
    """Connectivity monitor bound to the current app."""
    return current_app.extensions["connectivity"]
