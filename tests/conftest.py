"""Shared fixtures for Panther tests."""
import os
import stat
import pytest

from panther.vault.config import PantherConfig
from panther.vault.crypto import derive_key


@pytest.fixture
def key():
    """Key derived from a known password."""
    return derive_key("correct horse battery staple")


@pytest.fixture
def other_key():
    """A different, valid key."""
    return derive_key("Tr0ub4dor&3")


@pytest.fixture
def staging_dir(tmp_path):
    path = tmp_path / "shm"
    path.mkdir()
    return path


@pytest.fixture
def make_editor(tmp_path):
    """Write an executable shell script that stands in for an editor."""
    def _make(name: str, body: str):
        path = tmp_path / "bin" / name
        path.parent.mkdir(exist_ok=True)
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR)
        return str(path)
    return _make


@pytest.fixture
def config_for(staging_dir, tmp_path):
    """Build a config whose allow-list contains the given editor."""
    def _config(editor=None, **kwargs):
        allowed = {"vim"}
        if editor:
            allowed.add(os.path.basename(editor))
        values = {
            "editor": editor,
            "allowed_editors": frozenset(allowed),
            "backup_root": tmp_path / "backups",
            "staging_dirs": (staging_dir,),
            "poll_interval": 0.05,
        }
        values.update(kwargs)
        return PantherConfig(**values)
    return _config
