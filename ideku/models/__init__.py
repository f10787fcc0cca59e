"""
Ideku — Idea Workflow Core
SQLAlchemy extension instance shared by every model module.

Usage:
    from ideku.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
