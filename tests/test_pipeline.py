import asyncio
import json

import pytest
from pydub import AudioSegment

from reader_pipeline.config import PipelineConfig
from reader_pipeline.errors import AuthMissingError, ChunkingError, ConversionFailed, ProviderError
from reader_pipeline.pipeline import ReaderPipeline
from reader_pipeline.playback import PlaybackTimeline
from reader_pipeline.split_text import chunk_text
from reader_pipeline.tts_engine import MockTtsEngine


def _config(tmp_path, **overrides):
    return PipelineConfig(
        chunk_directory=tmp_path / "chunks",
        output_directory=tmp_path / "out",
        output_format="wav",
        initial_retry_delay=0.0,
        **overrides,
    )


def test_convert_produces_one_seekable_file(tmp_path):
    text = ("a" * 98 + ". ") * 90
    chunks = chunk_text(text, 4000)
    assert len(chunks) == 3
    durations = {chunks[0].content: 30_000, chunks[1].content: 30_000, chunks[2].content: 25_000}
    engine = MockTtsEngine(durations_ms=durations, sample_rate=8000)
    pipeline = ReaderPipeline(engine, _config(tmp_path))

    result = asyncio.run(pipeline.convert(text, "fable", title="Sample"))

    assert result.asset.segment_durations_ms == [30_000, 30_000, 25_000]
    assert result.asset.total_duration_ms == 85_000
    exported = AudioSegment.from_file(result.asset.location, format="wav")
    assert abs(len(exported) - 85_000) <= 50

    timeline = PlaybackTimeline(result.asset.segment_durations_ms)
    cursor = timeline.seek(65_000)
    assert (cursor.segment_index, cursor.offset_ms) == (2, 5_000)

    manifest = json.loads(result.manifest_path.read_text(encoding="utf-8"))
    assert manifest["conversion_id"] == result.conversion_id
    assert manifest["title"] == "Sample"
    assert manifest["final_ms"] == 85_000
    assert [chunk["start_ms"] for chunk in manifest["chunks"]] == [0, 30_000, 60_000]
    # Intermediate segments are removed once joined.
    assert list((tmp_path / "chunks").glob("*")) == []


def test_convert_rejects_blank_text(tmp_path):
    pipeline = ReaderPipeline(MockTtsEngine(), _config(tmp_path))

    with pytest.raises(ChunkingError):
        asyncio.run(pipeline.convert("   \n ", "fable"))


def test_convert_retries_failed_synthesis(tmp_path):
    class FlakyEngine(MockTtsEngine):
        def __init__(self):
            super().__init__(sample_rate=8000)
            self.failed_once = False

        async def synthesize(self, text, voice):
            if text == "Second." and not self.failed_once:
                self.failed_once = True
                self.calls.append(text)
                raise ProviderError("temporary outage")
            return await super().synthesize(text, voice)

    engine = FlakyEngine()
    pipeline = ReaderPipeline(engine, _config(tmp_path, max_chunk_chars=8, max_attempts=3))

    result = asyncio.run(pipeline.convert("First. Second.", "fable"))

    assert result.attempts == 2
    assert len(result.asset.segment_durations_ms) == 2
    # The whole conversion re-ran, including the chunk that had succeeded.
    assert engine.calls.count("First.") == 2


def test_convert_gives_up_after_max_attempts(tmp_path):
    engine = MockTtsEngine(failures={"Broken."}, sample_rate=8000)
    pipeline = ReaderPipeline(engine, _config(tmp_path, max_attempts=2))

    with pytest.raises(ConversionFailed) as excinfo:
        asyncio.run(pipeline.convert("Broken.", "fable"))

    assert excinfo.value.failed_indices == [0]
    assert engine.calls == ["Broken.", "Broken."]
    assert list((tmp_path / "out").glob("*")) == []


def test_missing_credentials_are_not_retried(tmp_path):
    class NoKeyEngine(MockTtsEngine):
        async def synthesize(self, text, voice):
            self.calls.append(text)
            raise AuthMissingError("no key configured")

    engine = NoKeyEngine()
    pipeline = ReaderPipeline(engine, _config(tmp_path, max_attempts=5))

    with pytest.raises(ConversionFailed):
        asyncio.run(pipeline.convert("Hello there.", "fable"))

    assert engine.calls == ["Hello there."]
