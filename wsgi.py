"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask db migrate -m "description"
    flask drain-snapshots
"""

from sheetflow import create_app

app = create_app()
