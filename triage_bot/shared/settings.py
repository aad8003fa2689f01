"""Runtime settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class TriageSettings:
    """Repository target, SQLite location, and config path for one deployment."""

    repo: str
    data_dir: Path
    sqlite_path: Path
    config_path: Path | None
    tracker: str

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "TriageSettings":
        source = os.environ if env is None else env
        data_dir = Path(source.get("TRIAGE_BOT_DATA_DIR", "./data"))
        sqlite_path = Path(
            source.get("TRIAGE_BOT_SQLITE_PATH", str(data_dir / "triage_bot.sqlite"))
        )
        config_value = (source.get("TRIAGE_BOT_CONFIG") or "").strip()
        return cls(
            repo=(source.get("TRIAGE_BOT_REPO") or source.get("GITHUB_REPOSITORY") or "").strip(),
            data_dir=data_dir,
            sqlite_path=sqlite_path,
            config_path=Path(config_value) if config_value else None,
            tracker=(source.get("TRIAGE_BOT_TRACKER") or "in_memory").strip().lower(),
        )

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)


def get_settings(env: dict[str, str] | None = None) -> TriageSettings:
    settings = TriageSettings.from_env(env)
    settings.ensure_directories()
    return settings
