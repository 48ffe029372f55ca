"""Chunks produced by a model stream.

A stream is a forward-only async sequence of these variants, terminated
by exactly one ``DoneChunk``.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from domain.value_objects.grounding import GroundingData


@dataclass(frozen=True)
class TextChunk:
    content: str


@dataclass(frozen=True)
class ThinkingChunk:
    content: str


@dataclass(frozen=True)
class ImageChunk:
    data: bytes


@dataclass(frozen=True)
class CitationChunk:
    grounding: GroundingData


@dataclass(frozen=True)
class DoneChunk:
    # Provider continuation data, stored opaquely on the version
    model_parts: Optional[Any] = None


StreamChunk = Union[TextChunk, ThinkingChunk, ImageChunk, CitationChunk, DoneChunk]
