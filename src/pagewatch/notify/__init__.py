"""Notification delivery."""

from .telegram import TelegramNotifier, format_discovery_notification, format_event_notification

__all__ = ["TelegramNotifier", "format_discovery_notification", "format_event_notification", "split_message"]
