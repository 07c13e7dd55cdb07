"""Tests for :mod:`softstore.moderation.services.database`."""
