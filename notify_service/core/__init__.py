"""Core building blocks: settings, database base classes, services and errors."""
