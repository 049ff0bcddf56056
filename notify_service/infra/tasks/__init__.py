"""Background execution: taskiq lane brokers and the APScheduler instance."""
