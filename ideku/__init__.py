"""
Ideku — Idea Workflow Core
Flask Application Factory.

Usage:
    from ideku import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask

from ideku.config import config
from ideku.models import db
from ideku.core.logging_config import configure_logging

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)

    # ── Import all models so create_all sees every table ─────────────────
    from ideku.models import organization as _organization_models  # noqa: F401
    from ideku.models import workflow as _workflow_models          # noqa: F401
    from ideku.models import idea as _idea_models                  # noqa: F401
    from ideku.models import audit as _audit_models                # noqa: F401
    from ideku.models import notification as _notification_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        if db.engine.url.drivername.startswith("sqlite") and db.engine.url.database not in (None, "", ":memory:"):
            os.makedirs(os.path.dirname(db.engine.url.database), exist_ok=True)
        db.create_all()
        app.logger.debug("db.create_all() completed")

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-demo")
    def seed_demo_cmd():
        """Seed demo organisation, roles, levels and workflows."""
        from ideku.services.seed_service import seed_demo_data
        counts = seed_demo_data()
        logger.info("Seeded demo data: %s", counts)

    @app.cli.command("revert-expired-acting")
    def revert_expired_acting_cmd():
        """Clear acting delegations whose window has ended."""
        from ideku.services.acting_service import revert_expired_acting
        count = revert_expired_acting()
        logger.info("Reverted %s expired acting delegation(s).", count)

    @app.cli.command("check-workflows")
    def check_workflows_cmd():
        """Report shared priorities and malformed conditions."""
        from ideku.services.workflow_admin import validate_all_conditions
        from ideku.services.workflow_resolver import find_priority_conflicts
        for conflict in find_priority_conflicts():
            logger.warning(
                "Priority %s shared by %s; workflow %s wins ties",
                conflict["priority"],
                ", ".join(w["name"] for w in conflict["workflows"]),
                conflict["winner_id"],
            )
        for problem in validate_all_conditions():
            logger.warning("Condition %s of workflow %s is malformed: %s",
                           problem["condition_id"], problem["workflow_id"], problem["error"])

    return app
