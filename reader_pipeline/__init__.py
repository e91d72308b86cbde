"""
Text-to-speech reader pipeline.

This package exposes the building blocks used by the CLI entry point:

- Text chunking (`split_text`).
- Engine abstractions and concrete provider clients (`tts_engine`).
- Concurrent chunk synthesis (`orchestrator`).
- Segment joining (`merger`) and manifests (`metadata`).
- Playback position mapping across segments (`playback`).
- The retrying end-to-end conversion (`pipeline`).
"""

from .config import PipelineConfig
from .errors import (
    AssemblyError,
    AuthMissingError,
    ChunkingError,
    ConversionCancelled,
    ConversionFailed,
    ExportError,
    PipelineError,
    PlaybackError,
    ProbeError,
    ProviderError,
    StorageError,
    SynthesisError,
)
from .split_text import TextChunk, chunk_text
from .tts_engine import (
    GoogleGenAITtsEngine,
    MockTtsEngine,
    OpenAITtsEngine,
    PollyTtsEngine,
    TtsEngine,
)
from .storage import FileSegmentStore
from .orchestrator import ChunkOrchestrator, ChunkResult, Conversion, OrderedSegment
from .merger import AudioAssembler, JoinedAsset
from .metadata import MetadataBuilder, load_joined_asset
from .playback import (
    LoggingNowPlayingReporter,
    NowPlayingInfo,
    PlaybackController,
    PlaybackCursor,
    PlaybackTimeline,
)
from .pipeline import ConversionResult, ReaderPipeline

__all__ = [
    "PipelineConfig",
    "PipelineError",
    "ChunkingError",
    "SynthesisError",
    "AuthMissingError",
    "ProviderError",
    "StorageError",
    "ConversionFailed",
    "ConversionCancelled",
    "AssemblyError",
    "ProbeError",
    "ExportError",
    "PlaybackError",
    "TextChunk",
    "chunk_text",
    "TtsEngine",
    "OpenAITtsEngine",
    "PollyTtsEngine",
    "GoogleGenAITtsEngine",
    "MockTtsEngine",
    "FileSegmentStore",
    "Conversion",
    "ChunkResult",
    "OrderedSegment",
    "ChunkOrchestrator",
    "JoinedAsset",
    "AudioAssembler",
    "MetadataBuilder",
    "load_joined_asset",
    "PlaybackCursor",
    "PlaybackTimeline",
    "PlaybackController",
    "NowPlayingInfo",
    "LoggingNowPlayingReporter",
    "ConversionResult",
    "ReaderPipeline",
]
