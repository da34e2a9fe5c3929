"""Migration of stored rule groups to keys with base64 encoded namespace and group.

Rule group objects stored as ``rules/<user>/<namespace>/<group>`` are copied
to ``rules/<user>/<b64 namespace>/<b64 group>`` using URL-safe base64.
"""

from __future__ import annotations

import argparse
import base64
import logging
import os
from pathlib import Path
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)

RULES_PREFIX = "rules/"
_STORE_TYPES = ("filesystem",)


class _ObjectStore(Protocol):
    def list(self, prefix: str = "") -> list[str]: ...

    def get(self, key: str) -> bytes: ...

    def put(self, key: str, data: bytes) -> None: ...

    def delete(self, key: str) -> None: ...


def _encode(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


def generate_rule_object_key(key: str) -> str:
    """Return the new key of a rule group object, encoding namespace and group name."""
    components = key.split("/")
    if len(components) != 4:
        raise ValueError(
            f"bad rule group found with '/' character, key='{key}'; "
            "manual migration required"
        )
    prefix, user, namespace, group = components
    return f"{prefix}/{user}/{_encode(namespace)}/{_encode(group)}"


class DirectoryStore:
    """An object store kept as files below a root directory; keys use ``/``."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        parts = key.split("/")
        if any(part in ("", ".", "..") for part in parts):
            raise ValueError(f"invalid object key {key!r}")
        return self.root.joinpath(*parts)

    def list(self, prefix: str = "") -> list[str]:
        """Return every key starting with ``prefix``, sorted."""
        if not self.root.is_dir():
            return []
        keys = []
        for directory, _, files in os.walk(self.root):
            relative = Path(directory).relative_to(self.root)
            for name in files:
                key = (relative / name).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        return sorted(keys)

    def get(self, key: str) -> bytes:
        """Return the object's content; raise KeyError if it does not exist."""
        path = self._path(key)
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError):
            raise KeyError(key) from None

    def put(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``, replacing any existing object."""
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(bytes(data))

    def delete(self, key: str) -> None:
        """Remove the object; raise KeyError if it does not exist."""
        path = self._path(key)
        try:
            path.unlink()
        except (FileNotFoundError, IsADirectoryError):
            raise KeyError(key) from None
        parent = path.parent
        root = self.root.resolve()
        while parent.resolve() != root and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent


def migrate_rules(
    source: _ObjectStore, destination: _ObjectStore, delete_source: bool = False
) -> list[tuple[str, str]]:
    """Copy every rule group to its new key; return ``(old_key, new_key)`` pairs."""
    logger.info("listing source rules")
    migrated = []
    for key in source.list(RULES_PREFIX):
        new_key = generate_rule_object_key(key)
        logger.info("%s ==> %s", key, new_key)
        destination.put(new_key, source.get(key))
        if delete_source:
            source.delete(key)
        migrated.append((key, new_key))
    return migrated


def _new_store(kind: str, directory: str, must_exist: bool) -> DirectoryStore:
    if kind not in _STORE_TYPES:
        raise ValueError(
            f"Unrecognized rule storage mode {kind}, choose one of: "
            + ", ".join(_STORE_TYPES)
        )
    if not directory:
        raise ValueError("a storage directory must be configured")
    if must_exist and not Path(directory).is_dir():
        raise ValueError(f"directory {directory!r} does not exist")
    return DirectoryStore(directory)


def main(argv: Sequence[str] | None = None) -> int:
    """Migrate rule groups from the source store to the destination store."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    parser = argparse.ArgumentParser(
        prog="rules-migrator",
        description="Copy rule groups to keys with encoded namespace and group names.",
    )
    parser.add_argument(
        "-delete-source",
        "--delete-source",
        dest="delete_source",
        action="store_true",
        help="If enabled, rule groups in the specified source store will be deleted upon migration.",
    )
    for side in ("src", "dst"):
        parser.add_argument(
            f"-{side}.type",
            f"--{side}.type",
            dest=f"{side}_type",
            default="filesystem",
            help="Method to use for backend rule storage (filesystem)",
        )
        parser.add_argument(
            f"-{side}.filesystem.dir",
            f"--{side}.filesystem.dir",
            dest=f"{side}_dir",
            default="",
            help="Directory holding the rule objects",
        )
    args = parser.parse_args(argv)

    try:
        source = _new_store(args.src_type, args.src_dir, must_exist=True)
    except ValueError as exc:
        logger.error("unable to initialize source bucket, %s", exc)
        return 1
    try:
        destination = _new_store(args.dst_type, args.dst_dir, must_exist=False)
    except ValueError as exc:
        logger.error("unable to initialize destination bucket, %s", exc)
        return 1

    try:
        migrate_rules(source, destination, args.delete_source)
    except (OSError, ValueError, KeyError) as exc:
        logger.error("rule migration failed, %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())