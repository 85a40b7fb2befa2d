"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask db migrate -m "description"
    flask expire-delegations
    flask check-hierarchy
"""

from reporting_access import create_app

app = create_app()
