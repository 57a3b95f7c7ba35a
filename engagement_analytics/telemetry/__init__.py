"""
Telemetry Module
================

Error tracking for the engagement analytics API.

Components:
- sentry.py: Error tracking and performance monitoring

Pipeline-level timing lives in engagement_analytics.analytics.telemetry.

Usage:
    from engagement_analytics.telemetry import init_sentry

    init_sentry()
"""

from engagement_analytics.telemetry.sentry import (
    init_sentry,
    capture_exception,
)


__all__ = [
    "init_sentry",
    "capture_exception",
]
