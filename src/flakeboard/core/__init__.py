"""Shared data model and exceptions."""
