"""Delivery of task notifications."""

from .notifier import LogNotifier, Notifier, SlackNotifier, build_notifier

__all__ = ["LogNotifier", "Notifier", "SlackNotifier", "build_notifier"]
