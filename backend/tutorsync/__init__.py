"""Recurring lesson schedule synchronization and routine tracking."""
