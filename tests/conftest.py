"""Shared test fixtures for foldersync."""

from __future__ import annotations

import io
import os
import zipfile
from pathlib import Path
from typing import Dict, Iterable, Tuple

import pytest
from fastapi.testclient import TestClient

from foldersync.api import create_app
from foldersync.config import ServerConfig

TOKEN = "abc123"


def snapshot(root: Path) -> Dict[str, object]:
    """Map every relative path under root to its bytes (or "<dir>")."""
    result: Dict[str, object] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames:
            rel = Path(dirpath, name).relative_to(root).as_posix()
            result[rel] = "<dir>"
        for name in filenames:
            path = Path(dirpath, name)
            result[path.relative_to(root).as_posix()] = path.read_bytes()
    return result


def make_zip(entries: Iterable[Tuple[str, bytes]]) -> bytes:
    """Build an in-memory zip with arbitrary (possibly hostile) entry names."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in entries:
            info = zipfile.ZipInfo(name)
            info.external_attr = 0o644 << 16
            zf.writestr(info, data)
    return buffer.getvalue()


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """A small folder with nested files, an empty directory and an executable."""
    root = tmp_path / "tree"
    (root / "notes").mkdir(parents=True)
    (root / "notes" / "todo.txt").write_text("buy milk", encoding="utf-8")
    (root / "notes" / "deep" / "er").mkdir(parents=True)
    (root / "notes" / "deep" / "er" / "leaf.bin").write_bytes(bytes(range(256)) * 50)
    (root / "empty").mkdir()
    (root / "top.txt").write_text("top level\n", encoding="utf-8")

    script = root / "run.sh"
    script.write_text("#!/bin/sh\necho hi\n", encoding="utf-8")
    script.chmod(0o755)
    return root


@pytest.fixture
def token_file(tmp_path: Path) -> Path:
    path = tmp_path / "tokens.txt"
    path.write_text(f"{TOKEN}\n\n   second-token  \n", encoding="utf-8")
    return path


@pytest.fixture
def server_config(tmp_path: Path, token_file: Path) -> ServerConfig:
    return ServerConfig(
        storage_path=tmp_path / "storage",
        tokens_path=token_file,
        max_multipart_bytes=1024 * 1024,
        tokens_refresh_seconds=0.05,
    )


@pytest.fixture
def client(server_config: ServerConfig):
    """TestClient with the app lifespan (token loading, watcher) running."""
    app = create_app(server_config)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth() -> Dict[str, str]:
    return {"Authorization": TOKEN}
