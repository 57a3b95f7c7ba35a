"""Engagement analytics API package."""
