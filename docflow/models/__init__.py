"""
Document Approval Workflow Engine
SQLAlchemy models package.

The ``db`` instance is created here and bound to the app in ``create_app``;
model modules import it as ``from docflow.models import db``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
