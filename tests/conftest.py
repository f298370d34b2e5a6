"""Shared fixtures: fake FFmpeg/FFprobe executables and storage layout."""

import json
import os
import stat
import sys
import textwrap
from pathlib import Path

import pytest

from vidingest.services.format_inspector import FormatInspector
from vidingest.services.storage_service import StorageLayout
from vidingest.services.transcode_service import TranscodeService

# Source files are JSON documents describing how the fake tools behave:
#   probe:        csv line printed by ffprobe (omit for a probe failure)
#   probe_bytes:  like probe, but written as raw latin-1 bytes
#   probe_sleep:  seconds ffprobe sleeps first
#   ffmpeg:       "ok" | "fail" | "nomanifest"
#   segments:     number of segments written on success
#   sleep:        seconds ffmpeg sleeps before producing output
#   noisy:        write a large amount of text on stdout and stderr
# Anything that is not valid JSON behaves like a corrupt file.

FAKE_FFPROBE = textwrap.dedent('''\
    import json, sys, time
    if "-version" in sys.argv:
        print("ffprobe version 6.1-fake")
        sys.exit(0)
    try:
        with open(sys.argv[-1]) as f:
            spec = json.load(f)
    except Exception:
        sys.stderr.write("Invalid data found when processing input\\n")
        sys.exit(1)
    time.sleep(spec.get("probe_sleep", 0))
    if "probe_bytes" in spec:
        sys.stdout.buffer.write(spec["probe_bytes"].encode("latin-1"))
        sys.exit(0)
    if "probe" not in spec:
        sys.exit(1)
    print(spec["probe"])
''')

FAKE_FFMPEG = textwrap.dedent('''\
    import json, os, sys, time
    args = sys.argv[1:]
    if "-version" in args:
        print("ffmpeg version 6.1-fake")
        sys.exit(0)
    source = args[args.index("-i") + 1]
    manifest = args[-1]
    pattern = args[args.index("-hls_segment_filename") + 1]
    with open(os.path.join(os.path.dirname(manifest), "ffmpeg_args.json"), "w") as f:
        json.dump(args, f)
    try:
        with open(source) as f:
            spec = json.load(f)
    except Exception:
        sys.stderr.write(source + ": Invalid data found when processing input\\n")
        sys.exit(1)
    time.sleep(spec.get("sleep", 0))
    if spec.get("noisy"):
        sys.stdout.write("frame=1 fps=0.0 q=0.0 size=0kB\\n" * 40000)
        sys.stderr.write("[hls] Opening segment for writing\\n" * 40000)
    mode = spec.get("ffmpeg", "ok")
    if mode == "nomanifest":
        sys.exit(0)
    count = spec.get("segments", 3)
    for i in range(count):
        with open(pattern % i, "wb") as f:
            f.write(b"\\x47" * 188)
    with open(manifest, "w") as f:
        f.write("#EXTM3U\\n")
        for i in range(count):
            f.write("#EXTINF:6.0,\\n" + os.path.basename(pattern % i) + "\\n")
        if mode == "ok":
            f.write("#EXT-X-ENDLIST\\n")
    if mode == "fail":
        sys.stderr.write("Conversion failed!\\n")
        sys.exit(1)
''')


def _write_tool(path: Path, body: str) -> str:
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def write_tool(tmp_path):
    """Write an executable Python script into tmp_path/bin and return its path"""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _write(name: str, body: str) -> str:
        return _write_tool(bin_dir / name, textwrap.dedent(body))

    return _write


@pytest.fixture
def fake_tools(tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    return {
        "ffmpeg": _write_tool(bin_dir / "ffmpeg", FAKE_FFMPEG),
        "ffprobe": _write_tool(bin_dir / "ffprobe", FAKE_FFPROBE),
    }


@pytest.fixture
def make_source(tmp_path):
    """Create a fake media file whose JSON content drives the fake tools"""
    uploads = tmp_path / "uploads"
    uploads.mkdir()

    def _make(name="input.mp4", raw=None, **spec):
        path = uploads / name
        if raw is not None:
            path.write_bytes(raw)
        else:
            path.write_text(json.dumps(spec))
        return str(path)

    return _make


@pytest.fixture
def layout(tmp_path):
    root = tmp_path / "videos"
    root.mkdir()
    return StorageLayout(root=str(root), public_base_url="http://cdn.test/videos")


@pytest.fixture
def inspector(fake_tools):
    return FormatInspector(ffprobe_path=fake_tools["ffprobe"], timeout=5)


@pytest.fixture
def transcoder(layout, fake_tools):
    return TranscodeService(layout=layout, ffmpeg_path=fake_tools["ffmpeg"], ffprobe_path=fake_tools["ffprobe"])


@pytest.fixture
def ffmpeg_args():
    """Reads the argument list the fake ffmpeg recorded in an output directory"""

    def _read(output_dir) -> list:
        with open(os.path.join(output_dir, "ffmpeg_args.json")) as f:
            return json.load(f)

    return _read
