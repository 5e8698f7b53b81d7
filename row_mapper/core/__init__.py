"""Core engine: configuration, connections, executors and sessions."""
