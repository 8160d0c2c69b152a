"""Notification infrastructure adapters."""
