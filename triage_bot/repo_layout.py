"""Discover project modules and CODEOWNERS entries from a checkout on disk."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from triage_bot.engine.ownership import OwnershipEntry, is_valid_username

logger = logging.getLogger(__name__)

BUILD_FILES = ("build.gradle.kts", "build.gradle", "pyproject.toml", "package.json")
IGNORED_DIRS = frozenset({"build", "node_modules", "dist", ".git", ".gradle", ".venv", "venv"})
MODULES_FILE = Path("config") / "modules.txt"
CODEOWNERS_LOCATIONS = (
    Path(".github") / "CODEOWNERS",
    Path("docs") / "CODEOWNERS",
    Path("CODEOWNERS"),
)
CODEOWNERS_STRENGTH = 1.0

_OWNER_RE = re.compile(r"^@([A-Za-z0-9_-]+)(/[A-Za-z0-9_.-]+)?$")
_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")


def read_module_list(path: Path) -> list[str]:
    modules: list[str] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        name = line.split("#", 1)[0].strip().strip("/")
        if name and name not in modules:
            modules.append(name)
    return modules


def discover_modules(root: Path, build_files: tuple[str, ...] = BUILD_FILES) -> list[str]:
    """Return module directories relative to ``root``.

    ``config/modules.txt`` overrides discovery; otherwise every directory
    below the root that carries a build file counts as a module.
    """
    root = Path(root)
    explicit = root / MODULES_FILE
    if explicit.is_file():
        return read_module_list(explicit)

    found: set[str] = set()
    for name in build_files:
        for path in root.rglob(name):
            rel = path.parent.relative_to(root)
            if rel == Path(".") or any(part in IGNORED_DIRS for part in rel.parts):
                continue
            found.add(rel.as_posix())
    modules = sorted(found)
    logger.debug("Discovered %d modules under %s", len(modules), root)
    return modules


def find_codeowners(root: Path) -> Path | None:
    for location in CODEOWNERS_LOCATIONS:
        candidate = Path(root) / location
        if candidate.is_file():
            return candidate
    return None


def parse_codeowners(text: str, strength: float = CODEOWNERS_STRENGTH) -> list[OwnershipEntry]:
    """Turn ``pattern @owner ...`` lines into ownership entries.

    Team handles (``@org/team``) and e-mail owners cannot be assigned
    directly and are skipped.
    """
    entries: list[OwnershipEntry] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        content = line.split("#", 1)[0].strip()
        if not content:
            continue
        pattern, *owners = content.split()
        for owner in owners:
            match = _OWNER_RE.match(owner)
            if match is None:
                if _EMAIL_RE.match(owner):
                    logger.info("CODEOWNERS line %d: skipping e-mail owner %s", lineno, owner)
                else:
                    logger.warning("CODEOWNERS line %d: unrecognized owner %r", lineno, owner)
                continue
            if match.group(2):
                logger.info("CODEOWNERS line %d: skipping team owner %s", lineno, owner)
                continue
            username = match.group(1)
            if not is_valid_username(username):
                logger.warning("CODEOWNERS line %d: invalid username %r", lineno, username)
                continue
            entries.append(
                OwnershipEntry(
                    file_pattern=pattern,
                    owner_name=username,
                    github_username=username,
                    ownership_strength=strength,
                )
            )
    return entries


def load_codeowners(path: Path, strength: float = CODEOWNERS_STRENGTH) -> list[OwnershipEntry]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"CODEOWNERS file not found: {path}")
    return parse_codeowners(path.read_text(encoding="utf-8"), strength=strength)
