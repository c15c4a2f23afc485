"""Shared utilities: repeating task scheduling and logging setup."""
