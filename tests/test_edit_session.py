"""
Tests for EditSession staging, editor supervision and re-encryption.

Editors are small shell scripts placed on an allow-list built per test.
"""
import os
import queue
import stat
import time
import tempfile
import logging
import pytest

from panther.exceptions import ConfigError, CryptoError, FileIOError, ParseError
from panther.vault.crypto import decode, encode
from panther.vault.edit_session import (
    EditSession,
    EventKind,
    FileEvent,
    SessionState,
    StagingWatcher,
    edit_file,
    staging_directory,
)


def wait_for_exit(seconds: float = 0.5):
    """Give a short-lived editor time to finish."""
    time.sleep(seconds)


@pytest.fixture
def quick_editor(make_editor):
    """An editor that exits immediately without touching the file."""
    return make_editor("quickedit", "exit 0")


# --- Staging ---

class TestStaging:
    """Tests for the IDLE -> STAGED transition."""

    def test_missing_source_stages_empty_file(self, tmp_path, key, config_for, staging_dir):
        session = EditSession(key, tmp_path / "new-secret", config_for(), watch=False)
        path = session.stage()
        assert session.state is SessionState.STAGED
        assert path.read_bytes() == b""
        assert path.parent == staging_dir
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_existing_source_is_decrypted(self, tmp_path, key, config_for):
        source = tmp_path / "secret.txt"
        source.write_bytes(encode(key, b"line one\n").to_bytes())
        session = EditSession(key, source, config_for(), watch=False)
        path = session.stage()
        assert path.read_bytes() == b"line one\n"
        assert path.suffix == ".txt"

    def test_undecryptable_source_aborts(self, tmp_path, key, config_for, staging_dir):
        """Ciphertext that is not block aligned never reaches the staging dir."""
        source = tmp_path / "secret"
        source.write_text("00" * 15 + "11" * 16 + "\n")
        session = EditSession(key, source, config_for(), watch=False)
        with pytest.raises(CryptoError):
            session.stage()
        assert session.state is SessionState.ERROR
        assert session.staging_path is None
        assert list(staging_dir.iterdir()) == []
        assert session.pid is None

    def test_start_without_editor_stages_nothing(self, tmp_path, key, config_for, staging_dir):
        source = tmp_path / "secret"
        source.write_bytes(encode(key, b"plaintext").to_bytes())
        config = config_for()
        config.editor = "rm"
        session = EditSession(key, source, config, watch=False)
        with pytest.raises(ConfigError):
            session.start()
        assert session.state is SessionState.ERROR
        assert session.staging_path is None
        assert list(staging_dir.iterdir()) == []

    def test_corrupt_source_aborts(self, tmp_path, key, config_for, staging_dir, quick_editor):
        source = tmp_path / "secret"
        source.write_text("not an envelope")
        session = EditSession(key, source, config_for(quick_editor), watch=False)
        with pytest.raises(ParseError):
            session.start()
        assert session.state is SessionState.ERROR
        assert session.pid is None
        assert list(staging_dir.iterdir()) == []

    def test_fallback_to_temp_dir(self, tmp_path, key, config_for, monkeypatch):
        fallback = tmp_path / "tmp"
        fallback.mkdir()
        monkeypatch.setattr(tempfile, "tempdir", str(fallback))
        config = config_for(staging_dirs=(tmp_path / "missing",))
        session = EditSession(key, tmp_path / "secret", config, watch=False)
        assert session.stage().parent == fallback

    def test_staging_directory_preference(self, tmp_path):
        first = tmp_path / "first"
        second = tmp_path / "second"
        second.mkdir()
        assert staging_directory([first, second]) == second


# --- Launch ---

class TestLaunch:
    """Tests for the STAGED -> EDITOR_RUNNING transition."""

    def test_no_editor_configured(self, tmp_path, key, config_for):
        session = EditSession(key, tmp_path / "secret", config_for(), watch=False)
        session.stage()
        with pytest.raises(ConfigError):
            session.launch()
        assert session.state is SessionState.ERROR
        assert session.pid is None

    def test_disallowed_editor(self, tmp_path, key, config_for):
        config = config_for()
        config.editor = "rm"
        session = EditSession(key, tmp_path / "secret", config, watch=False)
        session.stage()
        with pytest.raises(ConfigError):
            session.launch()
        assert session.pid is None

    def test_spawn_failure(self, tmp_path, key, config_for):
        config = config_for(editor=str(tmp_path / "bin" / "ghostedit"))
        session = EditSession(key, tmp_path / "secret", config, watch=False)
        session.stage()
        with pytest.raises(FileIOError):
            session.launch()
        assert session.state is SessionState.ERROR

    def test_launch_records_pid(self, tmp_path, key, config_for, quick_editor):
        session = EditSession(key, tmp_path / "secret", config_for(quick_editor), watch=False)
        pid = session.start()
        assert session.pid == pid
        assert session.state is SessionState.EDITOR_RUNNING
        session.run()

    def test_tick_before_launch(self, tmp_path, key, config_for):
        session = EditSession(key, tmp_path / "secret", config_for(), watch=False)
        with pytest.raises(RuntimeError):
            session.tick()


# --- Supervision loop ---

class TestSupervision:
    """Tests for the polling loop."""

    def test_modification_is_reencrypted(self, tmp_path, key, config_for, quick_editor):
        """A content event re-encrypts the staging file to the permanent path."""
        secret = tmp_path / "secret"
        session = EditSession(key, secret, config_for(quick_editor), watch=False)
        session.start()
        session.staging_path.write_bytes(b"new content")
        session.mailbox.put(FileEvent(session.staging_path, EventKind.MODIFIED))

        assert session.tick() is True
        assert session.sync_count == 1
        assert decode(key, secret.read_bytes()) == b"new content"

        session.run()
        assert session.state is SessionState.FINALIZING
        assert session.sync_count == 1

    def test_save_and_exit_in_same_tick(self, tmp_path, key, config_for, quick_editor):
        """The pending save is handled before the exit is noticed."""
        secret = tmp_path / "secret"
        session = EditSession(key, secret, config_for(quick_editor), watch=False)
        session.start()
        session.staging_path.write_bytes(b"last save")
        wait_for_exit()
        session.mailbox.put(FileEvent(session.staging_path, EventKind.REPLACED))

        assert session.tick() is True
        assert decode(key, secret.read_bytes()) == b"last save"
        assert session.tick() is False
        assert session.state is SessionState.FINALIZING

    def test_exit_without_events(self, tmp_path, key, config_for, quick_editor):
        """Exit ends the loop without a re-encryption."""
        secret = tmp_path / "secret"
        session = EditSession(key, secret, config_for(quick_editor), watch=False)
        session.start()
        session.run()
        assert session.state is SessionState.FINALIZING
        assert session.sync_count == 0
        assert not secret.exists()

    def test_non_content_event(self, tmp_path, key, config_for, quick_editor):
        secret = tmp_path / "secret"
        session = EditSession(key, secret, config_for(quick_editor), watch=False)
        session.start()
        wait_for_exit()
        session.mailbox.put(FileEvent(session.staging_path, EventKind.DELETED))
        assert session.tick() is True
        assert session.sync_count == 0
        assert session.tick() is False

    def test_sync_failure_is_not_fatal(self, tmp_path, key, config_for, quick_editor, caplog):
        secret = tmp_path / "gone" / "secret"
        session = EditSession(key, secret, config_for(quick_editor), watch=False)
        session.start()
        session.mailbox.put(FileEvent(session.staging_path, EventKind.MODIFIED))
        with caplog.at_level(logging.ERROR, logger="panther.vault"):
            assert session.tick() is True
        assert session.failed_syncs == 1
        assert session.state is SessionState.EDITOR_RUNNING
        assert "Failed to save" in caplog.text
        session.run()
        assert session.state is SessionState.FINALIZING

    def test_close_keeps_staging_file(self, tmp_path, key, config_for, quick_editor):
        session = EditSession(key, tmp_path / "secret", config_for(quick_editor), watch=False)
        session.start()
        session.run()
        session.close()
        assert session.state is SessionState.CLOSED
        assert session.staging_path.exists()


# --- Watcher and end to end ---

class TestStagingWatcher:
    """Tests for the polling change producer."""

    def test_modification_posts_event(self, tmp_path):
        path = tmp_path / "watched"
        path.write_bytes(b"a")
        mailbox = queue.Queue(maxsize=4)
        watcher = StagingWatcher(path, mailbox, interval=0.02)
        watcher.start()
        try:
            time.sleep(0.05)
            path.write_bytes(b"abc")
            event = mailbox.get(timeout=2)
        finally:
            watcher.stop()
            watcher.join()
        assert event.kind is EventKind.MODIFIED
        assert event.is_content_change

    def test_replace_and_delete(self, tmp_path):
        path = tmp_path / "watched"
        path.write_bytes(b"a")
        watcher = StagingWatcher(path, queue.Queue(), interval=1)
        before = watcher._snapshot()
        replacement = tmp_path / "tmp"
        replacement.write_bytes(b"b")
        os.replace(replacement, path)
        after = watcher._snapshot()
        assert watcher._classify(before, after) is EventKind.REPLACED
        assert watcher._classify(after, None) is EventKind.DELETED
        assert watcher._classify(after, after) is None

    def test_full_mailbox_drops_event(self, tmp_path):
        mailbox = queue.Queue(maxsize=1)
        watcher = StagingWatcher(tmp_path / "x", mailbox)
        watcher._post(EventKind.MODIFIED)
        watcher._post(EventKind.MODIFIED)
        assert mailbox.qsize() == 1


class TestEditFile:
    """End-to-end edit with a scripted editor and the real watcher."""

    def test_editor_save_reaches_permanent_file(self, tmp_path, key, config_for, make_editor, staging_dir):
        editor = make_editor("scriptedit", "sleep 0.3\nprintf 'edited text' > \"$1\"\nsleep 1")
        secret = tmp_path / "notes"
        secret.write_bytes(encode(key, b"original").to_bytes())

        session = edit_file(key, secret, config_for(editor))

        assert decode(key, secret.read_bytes()) == b"edited text"
        assert session.sync_count >= 1
        assert session.state is SessionState.CLOSED
        assert list(staging_dir.iterdir()) == []

    def test_staging_removed_on_error(self, tmp_path, key, config_for, staging_dir):
        config = config_for(editor=str(tmp_path / "bin" / "ghostedit"))
        with pytest.raises(FileIOError):
            edit_file(key, tmp_path / "secret", config)
        assert list(staging_dir.iterdir()) == []
