"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask seed-statuses
    flask reconcile-approvals
"""

from payflow import create_app

app = create_app()
