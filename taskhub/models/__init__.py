"""
Task Tracking Engine
Shared SQLAlchemy handle.

Every model module imports ``db`` from here; the factory binds it with
``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
