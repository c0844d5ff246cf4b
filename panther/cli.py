"""
Panther command line.

Commands:
  encrypt <src> <dst>   Encrypt src and save the envelope into dst
  decrypt <src> <dst>   Decrypt src and save the plaintext into dst
  edit <path>           Edit an encrypted file with $EDITOR
  init <dir>            Write the .panther marker for a directory
  rotate-key <dir>      Re-encrypt every file in dir under a new password
  restore <backup>      Copy a rotation backup back over its source directory
"""
import sys
import argparse
import logging

from . import console
from .exceptions import ConfigError, PantherError, RotationError, ValidationError
from .version import __description__, __version__
from .vault.config import PantherConfig
from .vault.edit_session import edit_file
from .vault.files import decrypt_file_and_save, encrypt_file_and_save
from .vault.key_rotation import restore_backup, rotate_directory, validate_key, write_marker

logger = logging.getLogger("panther.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def cmd_encrypt(args: argparse.Namespace) -> int:
    key = console.gather_key()
    encrypt_file_and_save(key, args.src, args.dst)
    return EXIT_OK


def cmd_decrypt(args: argparse.Namespace) -> int:
    key = console.gather_key()
    decrypt_file_and_save(key, args.src, args.dst)
    return EXIT_OK


def cmd_edit(args: argparse.Namespace) -> int:
    config = PantherConfig.from_env()
    # fail before prompting when no editor is usable
    config.require_editor()
    key = console.gather_key()
    session = edit_file(key, args.path, config)
    if session.failed_syncs:
        console.terminal_message(
            f"edit: {session.failed_syncs} save(s) could not be written to {args.path}"
        )
        return EXIT_FAILURE
    return EXIT_OK


def cmd_init(args: argparse.Namespace) -> int:
    key = console.gather_key(confirm=True)
    if not validate_key(key, args.dir):
        raise ValidationError(f"{args.dir}: key does not match the existing marker")
    marker = write_marker(key, args.dir)
    console.terminal_message(f"init: wrote {marker}")
    return EXIT_OK


def cmd_rotate_key(args: argparse.Namespace) -> int:
    config = PantherConfig.from_env()
    old_key = console.gather_key("old password: ")
    new_key = console.gather_key("new password: ", confirm=True)
    try:
        stats = rotate_directory(args.dir, old_key, new_key, config.backup_root)
    except RotationError as err:
        console.terminal_message(f"rotate-key: {err}")
        console.terminal_message(
            f"rotate-key: {len(err.rotated)} file(s) already use the new key; "
            f"backup kept at {err.backup_dir} "
            f"(run 'panther restore {err.backup_dir}' to undo)"
        )
        return EXIT_FAILURE
    console.terminal_message(f"rotate-key: re-encrypted {stats['rotated']} file(s)")
    return EXIT_OK


def cmd_restore(args: argparse.Namespace) -> int:
    restored = restore_backup(args.backup)
    console.terminal_message(f"restore: restored {len(restored)} file(s)")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="panther", description=__description__)
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_enc = sub.add_parser("encrypt", help="Encrypt src file and save into dst file")
    p_enc.add_argument("src", help="Plaintext file")
    p_enc.add_argument("dst", help="Encrypted output file")
    p_enc.set_defaults(func=cmd_encrypt)

    p_dec = sub.add_parser("decrypt", help="Decrypt src file and save into dst file")
    p_dec.add_argument("src", help="Encrypted file")
    p_dec.add_argument("dst", help="Plaintext output file")
    p_dec.set_defaults(func=cmd_decrypt)

    p_edit = sub.add_parser("edit", help="Edit an encrypted file with $EDITOR")
    p_edit.add_argument("path", help="Encrypted file (created if missing)")
    p_edit.set_defaults(func=cmd_edit)

    p_init = sub.add_parser("init", help="Write the .panther marker for a directory")
    p_init.add_argument("dir", help="Directory of encrypted files")
    p_init.set_defaults(func=cmd_init)

    p_rot = sub.add_parser("rotate-key", help="Re-encrypt a directory under a new password")
    p_rot.add_argument("dir", help="Directory of encrypted files")
    p_rot.set_defaults(func=cmd_rotate_key)

    p_res = sub.add_parser("restore", help="Restore files from a rotation backup")
    p_res.add_argument("backup", help="Backup directory printed by rotate-key")
    p_res.set_defaults(func=cmd_restore)

    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except ConfigError as err:
        console.terminal_message(f"{args.cmd}: {err}")
        return EXIT_USAGE
    except PantherError as err:
        console.terminal_message(f"{args.cmd}: {err}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        console.terminal_message(f"{args.cmd}: interrupted")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
