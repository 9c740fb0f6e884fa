"""Telemetry and observability helpers.

This package emits deterministic run events for pipeline and coordinator auditing.
"""

from .logger import RunLogger

__all__ = ["RunLogger"]
