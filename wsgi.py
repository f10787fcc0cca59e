"""
Flask CLI entry point.

Usage:
    FLASK_APP=wsgi flask seed-demo
    FLASK_APP=wsgi flask revert-expired-acting
    FLASK_APP=wsgi flask check-workflows
"""

from ideku import create_app

app = create_app()
