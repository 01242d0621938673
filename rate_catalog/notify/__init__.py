"""Notification collaborators (admin notices, subscriber rate alerts)."""
