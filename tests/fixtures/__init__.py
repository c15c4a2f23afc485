"""Test fixtures for greekfeed."""
