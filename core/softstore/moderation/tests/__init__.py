"""Scenario tests for the moderation core."""
