from domain.value_objects.button_state import ButtonState, resolve_button_state
from domain.value_objects.grounding import GroundingData, GroundingSource
from domain.value_objects.stream_chunk import (
    CitationChunk,
    DoneChunk,
    ImageChunk,
    StreamChunk,
    TextChunk,
    ThinkingChunk,
)
from domain.value_objects.turn_request import ChunkSource, CommandType, TurnRequest

__all__ = [
    "ButtonState",
    "resolve_button_state",
    "GroundingData",
    "GroundingSource",
    "CitationChunk",
    "DoneChunk",
    "ImageChunk",
    "StreamChunk",
    "TextChunk",
    "ThinkingChunk",
    "ChunkSource",
    "CommandType",
    "TurnRequest",
]
