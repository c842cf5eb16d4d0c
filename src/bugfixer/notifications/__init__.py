"""Email notifications for validation requests, no-fix notices and outcomes."""

from src.bugfixer.notifications.mailer import EmailNotifier, NotificationError

__all__ = ["EmailNotifier", "NotificationError"]
