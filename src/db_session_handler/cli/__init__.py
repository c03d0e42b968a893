"""Command-line interface for db-session-handler."""
