"""Automation engine services."""
