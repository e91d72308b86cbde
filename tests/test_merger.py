import asyncio
import shutil
from pathlib import Path

import pytest
from pydub import AudioSegment

from reader_pipeline.errors import AssemblyError, ProbeError
from reader_pipeline.merger import AudioAssembler, JoinedAsset
from reader_pipeline.orchestrator import OrderedSegment
from reader_pipeline.storage import FileSegmentStore


def _write_segments(chunk_dir: Path, durations):
    chunk_dir.mkdir(parents=True, exist_ok=True)
    segments = []
    for index, duration in enumerate(durations):
        segment = AudioSegment.silent(duration=duration, frame_rate=22050)
        file_path = chunk_dir / f"conv_chunk_{index:03d}.wav"
        segment.export(file_path, format="wav")
        segments.append(OrderedSegment(index=index, location=file_path, duration_ms=len(segment)))
    return segments


def _assembler(tmp_path, **kwargs):
    store = FileSegmentStore(tmp_path / "chunks")
    return AudioAssembler(store, tmp_path / "out", output_format="wav", **kwargs)


def test_assemble_joins_segments_without_gaps(tmp_path):
    durations = [1000, 1500, 800]
    segments = _write_segments(tmp_path / "chunks", durations)

    asset = asyncio.run(_assembler(tmp_path).assemble(segments, "conv"))

    assert asset.location == tmp_path / "out" / "conv.wav"
    assert asset.location.exists()
    assert asset.segment_durations_ms == durations
    assert asset.segment_offsets_ms == [0, 1000, 2500]
    exported = AudioSegment.from_file(asset.location, format="wav")
    assert abs(len(exported) - sum(durations)) <= 50
    assert abs(asset.total_duration_ms - len(exported)) <= 50


def test_assemble_removes_segments_unless_kept(tmp_path):
    segments = _write_segments(tmp_path / "chunks", [300, 300])
    asyncio.run(_assembler(tmp_path).assemble(segments, "conv"))
    assert not any(segment.location.exists() for segment in segments)

    segments = _write_segments(tmp_path / "chunks", [300, 300])
    asyncio.run(_assembler(tmp_path, keep_chunks=True).assemble(segments, "conv2"))
    assert all(segment.location.exists() for segment in segments)


def test_assemble_rejects_empty_input(tmp_path):
    with pytest.raises(AssemblyError):
        asyncio.run(_assembler(tmp_path).assemble([], "conv"))


def test_assemble_rejects_index_gaps(tmp_path):
    segments = _write_segments(tmp_path / "chunks", [300, 300, 300])
    del segments[1]

    with pytest.raises(AssemblyError) as excinfo:
        asyncio.run(_assembler(tmp_path).assemble(segments, "conv"))

    assert [segment.index for segment in excinfo.value.segments] == [0, 2]
    assert not (tmp_path / "out" / "conv.wav").exists()


def test_unreadable_segment_keeps_segments_for_retry(tmp_path):
    segments = _write_segments(tmp_path / "chunks", [300, 300])
    segments[1].location.write_bytes(b"garbage")

    with pytest.raises(ProbeError) as excinfo:
        asyncio.run(_assembler(tmp_path).assemble(segments, "conv"))

    assert excinfo.value.segments == segments
    assert segments[0].location.exists()
    assert not (tmp_path / "out" / "conv.wav").exists()


def test_unknown_output_format_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        AudioAssembler(FileSegmentStore(tmp_path), tmp_path, output_format="flac")


def test_discard_removes_asset_and_manifest(tmp_path):
    location = tmp_path / "conv.wav"
    location.write_bytes(b"audio")
    manifest = tmp_path / "conv.json"
    manifest.write_text("{}", encoding="utf-8")

    asyncio.run(_assembler(tmp_path).discard(JoinedAsset(location=location, segment_durations_ms=[1])))

    assert not location.exists()
    assert not manifest.exists()


@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg is required for AAC export")
def test_m4a_export_matches_duration_table(tmp_path):
    durations = [1000, 1500, 800]
    segments = _write_segments(tmp_path / "chunks", durations)
    assembler = AudioAssembler(FileSegmentStore(tmp_path / "chunks"), tmp_path / "out")

    asset = asyncio.run(assembler.assemble(segments, "conv"))

    assert asset.location.suffix == ".m4a"
    exported = AudioSegment.from_file(asset.location)
    assert abs(len(exported) - asset.total_duration_ms) <= 50
    assert not list(tmp_path.glob("out/.*.partial"))
