"""
Ideku — Idea Workflow Core
Notification Service.

NotificationService creates and queries in-app notifications.
NotificationDispatcher is the collaborator the workflow services call
once their transaction has committed: delivery runs inline or on a
daemon thread (``NOTIFICATION_ASYNC``) and a delivery failure is logged,
never raised, so it cannot undo the transition that triggered it.
"""

import logging
import threading
from datetime import datetime, timezone

from flask import current_app

from ideku.models import db
from ideku.models.notification import Notification

logger = logging.getLogger(__name__)


# ── Templates ────────────────────────────────────────────────────────────────

_TEMPLATES = {
    "idea_submitted": {
        "title": "[Approval] {idea_code} awaits your review (stage {stage})",
        "message": "{idea_name} needs your sign-off at stage {stage} of workflow '{workflow_name}'.",
        "category": "approval",
        "severity": "info",
    },
    "idea_approved": {
        "title": "{idea_code} approved at stage {stage}",
        "message": "{idea_name} was approved by {actor} and moved to '{status}'.",
        "category": "decision",
        "severity": "success",
    },
    "idea_completed": {
        "title": "{idea_code} completed",
        "message": "{idea_name} passed every approval stage of '{workflow_name}'.",
        "category": "decision",
        "severity": "success",
    },
    "idea_rejected": {
        "title": "{idea_code} rejected at stage {stage}",
        "message": "{idea_name} was rejected by {actor}: {reason}",
        "category": "decision",
        "severity": "error",
    },
    "stage_bypassed": {
        "title": "{idea_code} stage {stage} bypassed",
        "message": "{actor} bypassed stage {stage} of {idea_name}: {reason}",
        "category": "workflow",
        "severity": "warning",
    },
    "workflow_changed": {
        "title": "{idea_code} moved to workflow '{workflow_name}'",
        "message": "{actor} changed the workflow of {idea_name} from '{old_workflow_name}' "
                   "to '{workflow_name}'. Status: {status}.",
        "category": "workflow",
        "severity": "info",
    },
    "feedback_sent": {
        "title": "Feedback on {idea_code}",
        "message": "{actor}: {comment}",
        "category": "feedback",
        "severity": "info",
    },
}


def render_template(template: str, context: dict) -> dict:
    """Render a notification template.

    Returns:
        {"title", "message", "category", "severity"}

    Raises:
        KeyError: unknown template or missing context key.
    """
    tpl = _TEMPLATES[template]
    return {
        "title": tpl["title"].format(**context)[:300],
        "message": tpl["message"].format(**context),
        "category": tpl["category"],
        "severity": tpl["severity"],
    }


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="system", severity="info",
               recipient="all", recipient_user_id=None, template="",
               entity_type="idea", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            recipient=recipient,
            recipient_user_id=recipient_user_id,
            template=template,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def broadcast(*, title, message="", category="system", severity="info",
                  template="", entity_type="idea", entity_id=None, recipients=None):
        """
        Send a notification to multiple recipients (or 'all' if none given).

        Args:
            recipients: list of ``(username, user_id)`` pairs. If None, sends to 'all'.

        Returns:
            List of created Notification instances.
        """
        targets = recipients or [("all", None)]
        notifications = []
        for username, user_id in targets:
            notif = Notification(
                recipient=username,
                recipient_user_id=user_id,
                template=template,
                title=title,
                message=message,
                category=category,
                severity=severity,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient="all", unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        )
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.id.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(recipient="all"):
        """Return count of unread notifications."""
        return Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        ).filter_by(is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient="all"):
        """Mark all notifications for a recipient as read."""
        q = Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        ).filter_by(is_read=False)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count


# ── Dispatcher ───────────────────────────────────────────────────────────────

class NotificationDispatcher:
    """Post-commit, best-effort delivery of workflow notifications."""

    def notify(self, recipients, template: str, context: dict, *, entity_id=None) -> None:
        """
        Deliver *template* to *recipients*.

        Args:
            recipients: iterable of User rows or ``(username, user_id)`` pairs.
                        Plain pairs are extracted before any thread starts so
                        no ORM instance crosses the thread boundary.
            template: key of ``_TEMPLATES``.
            context: format values for the template.
            entity_id: idea id the notification links to.
        """
        targets = sorted({_as_target(r) for r in recipients})
        if not targets:
            logger.debug("No recipients for %s", template, extra={"template": template})
            return

        if current_app.config.get("NOTIFICATION_ASYNC", False):
            app = current_app._get_current_object()
            t = threading.Thread(
                target=self._deliver_in_background,
                args=(app, targets, template, dict(context), entity_id),
                daemon=True,
            )
            t.start()
        else:
            self._deliver(targets, template, context, entity_id)

    def _deliver_in_background(self, app, targets, template, context, entity_id):
        with app.app_context():
            try:
                self._deliver(targets, template, context, entity_id)
            finally:
                db.session.remove()

    def _deliver(self, targets, template, context, entity_id) -> None:
        try:
            rendered = render_template(template, context)
            NotificationService.broadcast(
                recipients=targets,
                template=template,
                entity_type="idea",
                entity_id=entity_id,
                **rendered,
            )
            logger.info(
                "Notification %s sent to %d recipient(s)", template, len(targets),
                extra={"idea_id": entity_id, "template": template,
                       "recipients": [t[0] for t in targets]},
            )
        except Exception:
            db.session.rollback()
            logger.exception(
                "Notification %s delivery failed", template,
                extra={"idea_id": entity_id, "template": template},
            )


def _as_target(recipient) -> tuple[str, int | None]:
    if isinstance(recipient, tuple):
        return recipient
    return recipient.username, recipient.id


dispatcher = NotificationDispatcher()
