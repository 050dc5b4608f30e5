"""
Pytest fixtures for video renderer tests.

The real ffmpeg binary is replaced by a small Python script (see
``fake_ffmpeg``) that records its arguments, prints progress lines, and
exits with a chosen code, so the suite runs without ffmpeg installed.
Remote assets are served by ``httpx.MockTransport``.
"""

import json
import os
import shutil
import stat
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest

from video_renderer.config import Settings


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: test runs the real ffmpeg binary (skipped when it is not installed)",
    )


requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None,
    reason="ffmpeg not installed",
)

# Smallest valid-looking payloads; the fake encoder never decodes them.
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 256 + b"\xff\xd9"
MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 1024


@dataclass
class FakeFFmpeg:
    """Handle on a generated fake-ffmpeg executable."""

    path: Path
    argv_file: Path
    pid_file: Path

    @property
    def was_called(self) -> bool:
        return self.argv_file.exists()

    @property
    def argv(self) -> list[str]:
        return json.loads(self.argv_file.read_text())

    @property
    def pid(self) -> int:
        return int(self.pid_file.read_text())


_FAKE_FFMPEG_TEMPLATE = """\
#!{python}
import json
import os
import sys
import time

args = sys.argv[1:]
with open({argv_file!r}, "w") as f:
    json.dump(args, f)
with open({pid_file!r}, "w") as f:
    f.write(str(os.getpid()))

sys.stderr.write("Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'input':\\n")
sys.stderr.write("  Duration: 00:00:09.00, start: 0.000000, bitrate: 100 kb/s\\n")
sys.stderr.write({stderr!r})
sys.stderr.flush()

for step in range(1, 4):
    sys.stdout.write("frame=%d\\nout_time_us=%d\\nprogress=continue\\n" % (step * 90, step * 3000000))
    sys.stdout.flush()

time.sleep({sleep})

if {output_bytes} is not None:
    with open(args[-1], "wb") as f:
        f.write(b"\\x00" * {output_bytes})

if {exit_code} == 0:
    sys.stdout.write("progress=end\\n")
    sys.stdout.flush()
sys.exit({exit_code})
"""


@pytest.fixture
def fake_ffmpeg(tmp_path) -> Callable[..., FakeFFmpeg]:
    """Factory for fake ffmpeg executables with scripted behaviour."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    counter = {"n": 0}

    def make(
        *,
        exit_code: int = 0,
        stderr: str = "",
        sleep: float = 0,
        output_bytes: Optional[int] = 2048,
    ) -> FakeFFmpeg:
        counter["n"] += 1
        n = counter["n"]
        script = bin_dir / f"ffmpeg-{n}"
        argv_file = bin_dir / f"ffmpeg-{n}.argv.json"
        pid_file = bin_dir / f"ffmpeg-{n}.pid"
        script.write_text(
            _FAKE_FFMPEG_TEMPLATE.format(
                python=sys.executable,
                argv_file=str(argv_file),
                pid_file=str(pid_file),
                stderr=stderr,
                sleep=sleep,
                output_bytes=output_bytes,
                exit_code=exit_code,
            )
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return FakeFFmpeg(path=script, argv_file=argv_file, pid_file=pid_file)

    return make


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing every directory into the test's tmp_path."""
    return Settings(
        _env_file=None,
        workspace_root=str(tmp_path / "work"),
        local_storage_path=str(tmp_path / "storage"),
        storage_backend="local",
        publish_mode="upload",
        public_base_url="https://bucket",
        encode_timeout_s=30.0,
        terminate_grace_s=2.0,
        fetch_timeout_s=5.0,
    )


@pytest.fixture
def workspace_root(settings) -> Path:
    return Path(settings.workspace_root)


def leftover_workspaces(root: Path) -> list[str]:
    if not root.exists():
        return []
    return sorted(os.listdir(root))


class AssetServer:
    """Serves fake media over ``httpx.MockTransport`` and records requests."""

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, bytes, dict[str, str]]] = {}
        self.requested: list[str] = []

    def add(self, url: str, content: bytes, status_code: int = 200, **headers: str) -> None:
        self.routes[url] = (status_code, content, headers)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        if url not in self.routes:
            return httpx.Response(404, content=b"not found")
        status_code, content, headers = self.routes[url]
        return httpx.Response(status_code, content=content, headers=headers)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def asset_server() -> AssetServer:
    server = AssetServer()
    server.add("https://x/bg.mp4", MP4_BYTES)
    for name in ("a", "b", "c"):
        server.add(f"https://x/{name}.jpg", JPEG_BYTES + name.encode())
    return server


class MemoryStorage:
    """In-memory object storage with the same contract as the real backends."""

    def __init__(self, base_url: str = "https://bucket", fail_with: Optional[Exception] = None) -> None:
        self.base_url = base_url
        self.fail_with = fail_with
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}

    def upload(self, key, file_obj, content_type):
        if self.fail_with is not None:
            raise self.fail_with
        self.objects[key] = file_obj.read()
        self.content_types[key] = content_type
        return f"{self.base_url}/{key}"


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()
