"""
Panther Configuration — Editor allow-list, backup and staging locations.

Reads settings from environment variables:
    EDITOR = <allow-listed editor binary>
    PANTHER_BACKUP_DIR = <directory for key rotation backups>
    PANTHER_STAGING_DIR = <preferred directory for decrypted staging files>

Security Note:
    Only allow-listed editor binaries are ever spawned with decrypted content.
"""
import os
import logging
from pathlib import Path
from typing import Optional

from pydantic import (
    BaseModel,
    Field,
    ValidationError as ModelValidationError,
    field_validator,
    model_validator,
)

from ..exceptions import ConfigError

logger = logging.getLogger("panther.vault")

DEFAULT_ALLOWED_EDITORS = frozenset({
    "vi",
    "vim",
    "nvim",
    "nano",
    "pico",
    "emacs",
    "micro",
    "mg",
    "ed",
    "kak",
    "hx",
    "joe",
})

# Memory-backed filesystem; the general temp directory is always tried last.
DEFAULT_STAGING_DIRS = (Path("/dev/shm"),)


def default_backup_root() -> Path:
    """Return the per-user directory that holds key rotation backups.

    Resolution order: ``PANTHER_BACKUP_DIR``, ``$XDG_CONFIG_HOME/panther/backups``,
    ``~/.config/panther/backups``.
    """
    override = os.environ.get("PANTHER_BACKUP_DIR")
    if override:
        return Path(override).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return base / "panther" / "backups"


def resolve_editor(name: str, allowed: frozenset[str]) -> str:
    """Check an editor name against the allow-list.

    The check is made on the binary's basename, so ``/usr/bin/vim`` passes
    when ``vim`` is allowed.

    Returns:
        The editor name unchanged.

    Raises:
        ConfigError: If the editor is empty or not allow-listed.
    """
    if not name or not name.strip():
        raise ConfigError("editor name is empty")
    binary = os.path.basename(name.strip())
    if binary not in allowed:
        raise ConfigError(
            f"editor {binary!r} is not allowed "
            f"(allowed: {', '.join(sorted(allowed))})"
        )
    return name.strip()


class PantherConfig(BaseModel):
    """Validated Panther configuration."""

    editor: Optional[str] = None
    allowed_editors: frozenset[str] = Field(default=DEFAULT_ALLOWED_EDITORS)
    backup_root: Path = Field(default_factory=default_backup_root)
    staging_dirs: tuple[Path, ...] = Field(default=DEFAULT_STAGING_DIRS)
    poll_interval: float = Field(default=1.0, gt=0)
    mailbox_size: int = Field(default=64, ge=1)

    @field_validator("allowed_editors")
    @classmethod
    def validate_allowed(cls, v: frozenset[str]) -> frozenset[str]:
        """Reject an empty allow-list."""
        if not v:
            raise ValueError("allowed_editors cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_editor_allowed(self) -> "PantherConfig":
        """Ensure a configured editor is on the allow-list."""
        if self.editor is not None:
            try:
                resolve_editor(self.editor, self.allowed_editors)
            except ConfigError as err:
                raise ValueError(str(err)) from err
        return self

    def require_editor(self) -> str:
        """Return the configured editor.

        Raises:
            ConfigError: If no editor is configured.
        """
        if not self.editor:
            raise ConfigError(
                "no editor configured; set EDITOR to one of: "
                f"{', '.join(sorted(self.allowed_editors))}"
            )
        return resolve_editor(self.editor, self.allowed_editors)

    @classmethod
    def from_env(cls, **overrides) -> "PantherConfig":
        """Create PantherConfig by loading values from environment.

        Raises:
            ConfigError: If the environment holds an invalid setting.
        """
        values = {
            "editor": os.environ.get("EDITOR") or None,
            "backup_root": default_backup_root(),
        }
        staging = os.environ.get("PANTHER_STAGING_DIR")
        if staging:
            values["staging_dirs"] = (Path(staging).expanduser(),) + DEFAULT_STAGING_DIRS
        values.update(overrides)
        try:
            config = cls(**values)
        except ModelValidationError as err:
            raise ConfigError(f"invalid configuration: {err}") from err
        logger.debug(
            "Loaded config: editor=%s backup_root=%s",
            config.editor, config.backup_root,
        )
        return config
