"""
Reporting Access Engine
Shared Flask-SQLAlchemy instance.

Every model module imports ``db`` from here so the application factory can
bind a single extension to the app:

    from reporting_access.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
