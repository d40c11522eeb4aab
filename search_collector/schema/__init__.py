"""Entities submitted to the metrics service."""

from .models import Annotation, Metric, RESERVED_TAG_NAMES

__all__ = ['Annotation', 'Metric', 'RESERVED_TAG_NAMES']
