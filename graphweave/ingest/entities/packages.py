# graphweave/ingest/entities/packages.py
"""
Package metadata resolution for external imports.

The default resolver walks up from the importing file looking for a
manifest:
- package.json: dependencies / devDependencies, version with ^ or ~
  stripped, manager from the lockfile next to it (pnpm, yarn, else npm)
- pyproject.toml: [project] dependencies and optional-dependencies,
  Poetry dependency tables
- requirements*.txt

An unresolvable package still yields PackageInfo(name).
"""

from __future__ import annotations

import json
import re
import tomllib
from pathlib import Path
from typing import Dict, Optional, Protocol, Tuple, runtime_checkable

from graphweave.ingest.entities.models import PackageInfo
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import ENTITIES

logger = get_logger(__name__)

MAX_WALK_DEPTH = 10
DEV_GROUPS = frozenset({"dev", "test", "tests", "lint", "docs"})

_REQUIREMENT_RE = re.compile(
    r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[[^\]]*\])?\s*"
    r"(?:(===?|~=|>=|<=|!=|>|<)\s*([^;,\s]+))?"
)


@runtime_checkable
class PackageResolver(Protocol):
    def resolve(self, package: str, file_path: str) -> Optional[PackageInfo]:
        ...


def package_root_name(source: str) -> str:
    """'@scope/pkg/sub' → '@scope/pkg', 'lodash/fp' → 'lodash'."""
    if source.startswith("@"):
        return "/".join(source.split("/")[:2])
    return source.split("/")[0]


def _canonical_dist(name: str) -> str:
    return re.sub(r"[-_.]+", "-", name).lower()


# (version, is_dev) per package name
Manifest = Dict[str, Tuple[Optional[str], bool]]


def _read_package_json(path: Path) -> Manifest:
    data = json.loads(path.read_text(encoding="utf-8"))
    deps: Manifest = {}
    for name, version in (data.get("devDependencies") or {}).items():
        deps[name] = (re.sub(r"^[\^~]", "", str(version)), True)
    for name, version in (data.get("dependencies") or {}).items():
        deps[name] = (re.sub(r"^[\^~]", "", str(version)), False)
    return deps


def _parse_requirement(line: str) -> Optional[Tuple[str, Optional[str]]]:
    line = line.split("#", 1)[0].strip()
    if not line or line.startswith("-"):
        return None
    m = _REQUIREMENT_RE.match(line)
    if not m:
        return None
    return m.group(1), m.group(3)


def _read_pyproject(path: Path) -> Manifest:
    data = tomllib.loads(path.read_text(encoding="utf-8"))
    deps: Manifest = {}

    project = data.get("project") or {}
    for group, reqs in (project.get("optional-dependencies") or {}).items():
        for req in reqs:
            parsed = _parse_requirement(req)
            if parsed:
                deps[_canonical_dist(parsed[0])] = (parsed[1], group in DEV_GROUPS)
    for req in project.get("dependencies") or []:
        parsed = _parse_requirement(req)
        if parsed:
            deps[_canonical_dist(parsed[0])] = (parsed[1], False)

    poetry = (data.get("tool") or {}).get("poetry") or {}
    for group_name, group in (poetry.get("group") or {}).items():
        for name, spec in (group.get("dependencies") or {}).items():
            version = spec if isinstance(spec, str) else (spec or {}).get("version")
            deps.setdefault(_canonical_dist(name), (version, group_name in DEV_GROUPS))
    for name, spec in (poetry.get("dependencies") or {}).items():
        if name == "python":
            continue
        version = spec if isinstance(spec, str) else (spec or {}).get("version")
        deps[_canonical_dist(name)] = (version, False)
    return deps


def _read_requirements(path: Path) -> Manifest:
    deps: Manifest = {}
    is_dev = "dev" in path.name or "test" in path.name
    for line in path.read_text(encoding="utf-8").splitlines():
        parsed = _parse_requirement(line)
        if parsed:
            deps[_canonical_dist(parsed[0])] = (parsed[1], is_dev)
    return deps


def detect_node_manager(directory: Path) -> str:
    if (directory / "pnpm-lock.yaml").exists():
        return "pnpm"
    if (directory / "yarn.lock").exists():
        return "yarn"
    return "npm"


class ManifestPackageResolver:
    """
    Default PackageResolver backed by manifests on disk.

    Manifests are parsed once per directory and cached for the resolver's
    lifetime. Relative file paths are resolved against `root`.
    """

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root) if root is not None else None
        self._cache: Dict[Path, Optional[Tuple[str, Manifest]]] = {}

    def resolve(self, package: str, file_path: str) -> Optional[PackageInfo]:
        name = package_root_name(package)
        path = Path(file_path)
        if not path.is_absolute() and self._root is not None:
            path = self._root / path

        directory = path.parent
        for _ in range(MAX_WALK_DEPTH):
            for manager, manifest in self._manifests(directory):
                if manager == "pip":
                    # Dotted module path: the distribution is named after the top package
                    key = _canonical_dist(name.split(".")[0])
                else:
                    key = name
                if key in manifest:
                    version, is_dev = manifest[key]
                    return PackageInfo(
                        name=name, version=version, manager=manager, is_dev_dependency=is_dev
                    )
            if directory.parent == directory:
                break
            directory = directory.parent

        return PackageInfo(name=name)

    def _manifests(self, directory: Path) -> list[Tuple[str, Manifest]]:
        found = []
        for filename, reader in (
            ("package.json", _read_package_json),
            ("pyproject.toml", _read_pyproject),
            ("requirements.txt", _read_requirements),
            ("requirements-dev.txt", _read_requirements),
        ):
            path = directory / filename
            if path not in self._cache:
                self._cache[path] = self._load(path, reader)
            entry = self._cache[path]
            if entry is not None:
                found.append(entry)
        return found

    @staticmethod
    def _load(path: Path, reader) -> Optional[Tuple[str, Manifest]]:
        if not path.is_file():
            return None
        try:
            manifest = reader(path)
        except (OSError, ValueError, tomllib.TOMLDecodeError) as exc:
            logger.warning(f"{ENTITIES} Unreadable manifest {path}: {exc}")
            return None
        manager = detect_node_manager(path.parent) if path.name == "package.json" else "pip"
        return manager, manifest


__all__ = [
    "PackageResolver",
    "ManifestPackageResolver",
    "package_root_name",
    "detect_node_manager",
]
