from __future__ import annotations

from typing import Dict, List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .orchestrator import OrderedSegment

__all__ = [
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
]


class PipelineError(Exception):
    """Base class for every error raised by the reader pipeline."""


class ChunkingError(PipelineError):
    pass


class SynthesisError(PipelineError):
    """
    Failure of a single chunk synthesis.

    ``index`` is filled in by the orchestrator once the error is attached to a chunk.
    """

    kind = "synthesis_error"

    def __init__(self, message: str, *, index: Optional[int] = None) -> None:
        super().__init__(message)
        self.index = index


class AuthMissingError(SynthesisError):
    kind = "auth_missing"


class ProviderError(SynthesisError):
    kind = "provider_error"


class StorageError(SynthesisError):
    kind = "storage_error"


class ConversionFailed(PipelineError):
    """
    Aggregate failure of a conversion. At least one chunk failed, so no audio is returned.
    """

    def __init__(self, failures: Dict[int, SynthesisError], total_chunks: int) -> None:
        self.failures = dict(sorted(failures.items()))
        self.total_chunks = total_chunks
        kinds = sorted({error.kind for error in self.failures.values()})
        super().__init__(
            f"{len(self.failures)} of {total_chunks} chunk(s) failed "
            f"(indices {self.failed_indices}, kinds {', '.join(kinds)})."
        )

    @property
    def failed_indices(self) -> List[int]:
        return list(self.failures)


class ConversionCancelled(PipelineError):
    """Raised when a conversion is cancelled before its results were used."""


class AssemblyError(PipelineError):
    """
    Raised when stored segments cannot be joined.

    The segments are kept on the exception so the caller can retry assembly without
    paying for synthesis again.
    """

    def __init__(self, message: str, *, segments: Sequence["OrderedSegment"] = ()) -> None:
        super().__init__(message)
        self.segments = list(segments)


class ProbeError(AssemblyError):
    pass


class ExportError(AssemblyError):
    pass


class PlaybackError(PipelineError):
    pass
