"""Notification delivery: dispatch runner and SMTP sender."""
