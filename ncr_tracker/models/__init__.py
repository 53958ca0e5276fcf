"""
NCR Tracker — SQLAlchemy models.

The shared ``db`` handle is created here and bound to the app in
``ncr_tracker.create_app``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
