"""Database infrastructure for the RCTI kernel."""
