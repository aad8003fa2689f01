"""GitHub token loading with read/write separation."""

from __future__ import annotations

import os
from dataclasses import dataclass

GITHUB_API_VERSION = "2022-11-28"


@dataclass(frozen=True)
class GitHubAuth:
    read_token: str | None
    write_token: str | None

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "GitHubAuth":
        env_map = os.environ if env is None else env
        shared = _clean(env_map.get("TRIAGE_BOT_GITHUB_TOKEN") or env_map.get("GITHUB_TOKEN"))
        return cls(
            read_token=_clean(env_map.get("TRIAGE_BOT_GITHUB_READ_TOKEN")) or shared,
            write_token=_clean(env_map.get("TRIAGE_BOT_GITHUB_WRITE_TOKEN")) or shared,
        )

    @property
    def can_write(self) -> bool:
        return self.write_token is not None

    def headers(self, write: bool = False) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        token = self.write_token if write else self.read_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def redacted(self) -> dict[str, str]:
        return {
            "read_token": _redact(self.read_token),
            "write_token": _redact(self.write_token),
        }


def _clean(token: str | None) -> str | None:
    if token is None:
        return None
    return token.strip() or None


def _redact(token: str | None) -> str:
    if token is None:
        return "unset"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
