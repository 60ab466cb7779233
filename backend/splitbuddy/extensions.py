"""
extensions.py — Flask extension singletons.

Creates the SQLAlchemy object at import time with no app attached; the app
factory calls db.init_app(app). Import it anywhere as:

    from backend.splitbuddy.extensions import db

Do not pass the app object to SQLAlchemy() here — that would prevent running
tests with a separate test app instance.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
