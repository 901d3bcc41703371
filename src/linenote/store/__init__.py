"""Annotation storage module.

Exports ``AnnotationStore``, the data model, and the YAML serializer.
"""
from __future__ import annotations

from linenote.store.models import (
    MAX_CONTEXT_LINES,
    AnnotatedLine,
    Annotation,
    AnnotationFile,
    SourceSnapshot,
)
from linenote.store.serializer import AnnotationSerializer
from linenote.store.store import AnnotationStore

__all__ = [
    "MAX_CONTEXT_LINES",
    "AnnotatedLine",
    "Annotation",
    "AnnotationFile",
    "AnnotationSerializer",
    "AnnotationStore",
    "SourceSnapshot",
]
