"""Tests for the CollectIQ workflow core."""
