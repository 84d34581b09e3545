"""Target profile loading utilities."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from ..targets import target_key
from .models import TargetProfile

logger = logging.getLogger(__name__)

PROFILE_SUFFIXES = (".yml", ".yaml")


class TargetProfileLoadError(RuntimeError):
    """Raised when one or more profile files cannot be parsed."""


class TargetProfileLoader:
    """Reads per-target defaults from YAML files.

    A file holds either one profile mapping or a ``targets:`` list of them.
    Results are cached until the set of profile files or their mtimes change.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        self._search_paths = [Path(path) for path in (search_paths or []) if Path(path).is_dir()]
        self._fingerprint: tuple[tuple[str, int], ...] | None = None
        self._cache: dict[str, TargetProfile] = {}

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def _profile_files(self) -> list[Path]:
        files: list[Path] = []
        for base in self._search_paths:
            if not base.is_dir():
                continue
            files.extend(
                sorted(path for path in base.iterdir() if path.is_file() and path.suffix in PROFILE_SUFFIXES)
            )
        return files

    @staticmethod
    def _documents(path: Path, document: Any) -> list[Any]:
        if isinstance(document, dict) and "targets" in document:
            entries = document["targets"]
            if not isinstance(entries, list):
                raise TargetProfileLoadError(f"'targets' in {path} must be a list")
            return entries
        return [document]

    def load_all(self) -> dict[str, TargetProfile]:
        """Return every profile keyed by ``type:name``.

        Later search paths override earlier ones when keys collide. All file
        errors are collected and raised together.
        """

        files = self._profile_files()
        fingerprint = tuple((str(path), path.stat().st_mtime_ns) for path in files)
        if fingerprint == self._fingerprint:
            return dict(self._cache)

        profiles: dict[str, TargetProfile] = {}
        errors: list[str] = []
        for path in files:
            try:
                document = yaml.safe_load(path.read_text(encoding="utf-8"))
            except yaml.YAMLError as exc:
                errors.append(f"Failed to parse YAML in {path}: {exc}")
                continue
            if document is None:
                continue
            try:
                entries = self._documents(path, document)
            except TargetProfileLoadError as exc:
                errors.append(str(exc))
                continue

            for index, entry in enumerate(entries):
                if not isinstance(entry, dict):
                    errors.append(f"Profile entry {index} in {path} is not a mapping")
                    continue
                try:
                    profile = TargetProfile.model_validate(entry)
                except ValidationError as exc:
                    errors.append(f"Profile validation error in {path}: {exc}")
                    continue
                if profile.key in profiles:
                    logger.debug("Profile overridden", extra={"target": profile.key, "file": str(path)})
                profiles[profile.key] = profile

        if errors:
            raise TargetProfileLoadError("; ".join(errors))

        self._fingerprint = fingerprint
        self._cache = profiles
        return dict(profiles)

    def get(self, target_type: str, target_name: str) -> TargetProfile | None:
        return self.load_all().get(target_key(target_type, target_name))


__all__ = ["PROFILE_SUFFIXES", "TargetProfileLoadError", "TargetProfileLoader"]
