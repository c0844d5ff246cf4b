"""
EditSession — Edit an encrypted file through a decrypted staging copy.

Lifecycle::

    IDLE -> STAGED -> EDITOR_RUNNING -> (REENCRYPTING -> EDITOR_RUNNING)* ->
    FINALIZING -> CLOSED

with ERROR reachable from staging and launch.

One supervising loop per session polls at a fixed interval. Each tick first
drains the staging file's change notifications and re-encrypts on a content
change; only when nothing was pending does it check whether the editor has
exited. A save followed by an immediate exit is therefore always written back
before the session finalizes.

Security Note:
    The staging file holds plaintext. It is created owner-only, preferably on
    a memory-backed filesystem, and the caller must remove it once the session
    ends (see ``edit_file``). Never log its contents.
"""
import os
import enum
import queue
import time
import tempfile
import threading
import subprocess
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..exceptions import CryptoError, FileIOError, PantherError
from .config import PantherConfig
from .crypto import decode, encode
from .files import file_exists, read_file, remove_file, write_file

logger = logging.getLogger("panther.vault")


class SessionState(enum.Enum):
    IDLE = "idle"
    STAGED = "staged"
    EDITOR_RUNNING = "editor_running"
    REENCRYPTING = "reencrypting"
    FINALIZING = "finalizing"
    CLOSED = "closed"
    ERROR = "error"


class EventKind(enum.Enum):
    MODIFIED = "modified"
    REPLACED = "replaced"  # new inode, e.g. editors that save via rename
    DELETED = "deleted"


@dataclass(frozen=True)
class FileEvent:
    """A change notification for a watched path."""

    path: Path
    kind: EventKind

    @property
    def is_content_change(self) -> bool:
        return self.kind in (EventKind.MODIFIED, EventKind.REPLACED)


class StagingWatcher(threading.Thread):
    """Poll a file's metadata and post change events to a bounded mailbox.

    Events that do not fit in a full mailbox are dropped: a single pending
    modification already makes the consumer re-read the whole file.
    """

    def __init__(self, path: Path, mailbox: queue.Queue, interval: float = 0.25):
        super().__init__(name=f"panther-watch-{path.name}", daemon=True)
        self.path = Path(path)
        self._mailbox = mailbox
        self._interval = interval
        self._stopped = threading.Event()
        self._last = self._snapshot()

    def _snapshot(self) -> Optional[tuple[int, int, int]]:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _classify(self, before, after) -> Optional[EventKind]:
        if before == after:
            return None
        if after is None:
            return EventKind.DELETED
        if before is None or before[0] != after[0]:
            return EventKind.REPLACED
        return EventKind.MODIFIED

    def _post(self, kind: EventKind) -> None:
        try:
            self._mailbox.put_nowait(FileEvent(self.path, kind))
        except queue.Full:
            logger.debug("Mailbox full, dropping %s event", kind.value)

    def run(self) -> None:
        while not self._stopped.wait(self._interval):
            current = self._snapshot()
            kind = self._classify(self._last, current)
            self._last = current
            if kind is not None:
                self._post(kind)

    def stop(self) -> None:
        self._stopped.set()


def staging_directory(candidates) -> Path:
    """Pick the first usable staging directory, falling back to the temp dir."""
    for candidate in candidates:
        candidate = Path(candidate)
        if candidate.is_dir() and os.access(candidate, os.W_OK | os.X_OK):
            return candidate
    return Path(tempfile.gettempdir())


class EditSession:
    """Supervise one editor process working on a decrypted staging copy.

    Args:
        key: Session key used to decrypt and re-encrypt the file.
        encrypted_path: Permanent, encrypted location of the file.
        config: Editor allow-list, staging and polling settings.
        watch: Start a ``StagingWatcher`` when the editor launches. Disable it
            to feed ``mailbox`` from another producer.
        mailbox: Bounded queue of ``FileEvent``; created from the config
            when omitted.
    """

    def __init__(
        self,
        key: bytes,
        encrypted_path,
        config: PantherConfig,
        watch: bool = True,
        mailbox: Optional[queue.Queue] = None,
    ):
        self._key = key
        self.encrypted_path = Path(encrypted_path)
        self._config = config
        self._watch = watch
        self.mailbox = mailbox if mailbox is not None else queue.Queue(
            maxsize=config.mailbox_size
        )
        self._state = SessionState.IDLE
        self._staging_path: Optional[Path] = None
        self._process: Optional[subprocess.Popen] = None
        self._watcher: Optional[StagingWatcher] = None
        self.sync_count = 0
        self.failed_syncs = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def staging_path(self) -> Optional[Path]:
        return self._staging_path

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    def _expect(self, *states: SessionState) -> None:
        if self._state not in states:
            raise RuntimeError(
                f"EditSession is {self._state.value}, expected "
                f"{' or '.join(s.value for s in states)}"
            )

    # ------------------------------------------------------------------
    # Staging and launch
    # ------------------------------------------------------------------

    def stage(self) -> Path:
        """Decrypt the permanent file into a fresh owner-only staging file.

        A missing permanent file stages an empty document.

        Raises:
            ParseError, CryptoError, FileIOError: If the source cannot be
                decrypted or the staging file cannot be written.
        """
        self._expect(SessionState.IDLE)
        try:
            if file_exists(self.encrypted_path):
                plaintext = decode(self._key, read_file(self.encrypted_path))
            else:
                logger.info(
                    "%s does not exist, starting from an empty file",
                    self.encrypted_path,
                )
                plaintext = b""
            directory = staging_directory(self._config.staging_dirs)
            try:
                fd, name = tempfile.mkstemp(
                    prefix="panther-",
                    suffix=self.encrypted_path.suffix,
                    dir=directory,
                )
            except OSError as err:
                raise FileIOError(directory, err.strerror or str(err)) from err
            self._staging_path = Path(name)
            os.close(fd)
            write_file(self._staging_path, plaintext)
        except PantherError:
            self._state = SessionState.ERROR
            raise
        self._state = SessionState.STAGED
        logger.debug("Staged %s at %s", self.encrypted_path, self._staging_path)
        return self._staging_path

    def launch(self) -> int:
        """Spawn the allow-listed editor on the staging file without waiting.

        Returns:
            The editor's process id.

        Raises:
            ConfigError: If no editor or a disallowed editor is configured.
            FileIOError: If the editor cannot be spawned.
        """
        self._expect(SessionState.STAGED)
        try:
            editor = self._config.require_editor()
        except PantherError:
            self._state = SessionState.ERROR
            raise
        # snapshot the staging file before the editor can touch it
        watcher = None
        if self._watch:
            watcher = StagingWatcher(
                self._staging_path,
                self.mailbox,
                interval=min(self._config.poll_interval, 0.25),
            )
        try:
            self._process = subprocess.Popen([editor, str(self._staging_path)])
        except OSError as err:
            self._state = SessionState.ERROR
            raise FileIOError(editor, f"failed to launch editor: {err}") from err
        if watcher is not None:
            self._watcher = watcher
            self._watcher.start()
        self._state = SessionState.EDITOR_RUNNING
        logger.info("Started %s (pid %d)", editor, self._process.pid)
        return self._process.pid

    def start(self) -> int:
        """Stage the plaintext and launch the editor.

        The editor is checked first so nothing is staged for an unusable one.
        """
        self._expect(SessionState.IDLE)
        try:
            self._config.require_editor()
        except PantherError:
            self._state = SessionState.ERROR
            raise
        self.stage()
        return self.launch()

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    def _drain(self) -> list[FileEvent]:
        events = []
        while True:
            try:
                events.append(self.mailbox.get_nowait())
            except queue.Empty:
                return events

    def sync(self) -> bool:
        """Re-encrypt the staging file over the permanent file.

        Failures are logged and do not end the session.

        Returns:
            True when the permanent file was written.
        """
        self._expect(SessionState.EDITOR_RUNNING)
        self._state = SessionState.REENCRYPTING
        try:
            plaintext = read_file(self._staging_path)
            write_file(self.encrypted_path, encode(self._key, plaintext).to_bytes())
        except (FileIOError, CryptoError) as err:
            self.failed_syncs += 1
            logger.error("Failed to save %s: %s", self.encrypted_path, err)
            return False
        finally:
            self._state = SessionState.EDITOR_RUNNING
        self.sync_count += 1
        logger.info("Saved %s", self.encrypted_path)
        return True

    def _editor_exited(self) -> bool:
        try:
            pid, status = os.waitpid(-1, os.WNOHANG)
        except ChildProcessError:
            # nothing left to reap; the editor is gone
            return True
        if pid == 0:
            return False
        if pid != self._process.pid:
            logger.debug("Ignoring exit of unrelated child %d", pid)
            return False
        self._process.returncode = os.waitstatus_to_exitcode(status)
        return True

    def tick(self) -> bool:
        """Run one supervision step.

        Returns:
            False once the editor has exited and the session is finalizing.
        """
        self._expect(SessionState.EDITOR_RUNNING)
        events = self._drain()
        if events:
            if any(event.is_content_change for event in events):
                self.sync()
            return True
        if self._editor_exited():
            self._stop_watcher()
            self._state = SessionState.FINALIZING
            logger.debug(
                "Editor exited with status %s", self._process.returncode,
            )
            return False
        return True

    def run(self) -> None:
        """Poll until the editor exits."""
        while self.tick():
            time.sleep(self._config.poll_interval)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _stop_watcher(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher.join(timeout=5)
            self._watcher = None

    def close(self) -> None:
        """Mark the session closed.

        The staging file is left in place; removing it is up to the caller.
        """
        self._stop_watcher()
        if self._state is not SessionState.ERROR:
            self._state = SessionState.CLOSED


def edit_file(key: bytes, encrypted_path, config: PantherConfig) -> EditSession:
    """Edit ``encrypted_path`` with the configured editor until it exits.

    The staging file is removed afterwards whatever happened during the
    session.
    """
    session = EditSession(key, encrypted_path, config)
    try:
        session.start()
        session.run()
    finally:
        session.close()
        if session.staging_path is not None:
            remove_file(session.staging_path)
    return session
