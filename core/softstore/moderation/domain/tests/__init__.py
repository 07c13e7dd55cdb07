"""Tests for :mod:`softstore.moderation.domain`."""
