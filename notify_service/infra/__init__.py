"""Infrastructure adapters: logging, database, email providers and task brokers."""
