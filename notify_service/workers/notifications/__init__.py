"""Notification worker tasks."""
