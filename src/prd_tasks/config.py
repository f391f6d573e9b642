"""
Engine configuration.

Settings are read from the environment the same way server.py reads its own
(``os.environ`` lookups with a "true/1/yes" truthy set), so the
MCP server, REST API and CLI all agree on one EngineConfig.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

DEFAULT_FILE_PATTERNS: Tuple[str, ...] = ("*prd*.md", "PRD*.md", "*PRD*.md")

_TRUTHY = ("true", "1", "yes")


def _env_flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class EngineConfig:
    """
    Options consumed by the parser, allocator and cache.

    auto_generate_ids: fill in missing task IDs during parse
    id_prefix: identifier prefix (``PRD`` → ``PRD-100001``)
    normalize_checkboxes: rewrite irregular checkbox / ID formatting on parse
    cross_document_ids: treat an ID claimed by another tracked document as a duplicate
    id_floor: seed for generated IDs when none exist yet (first ID is floor + 1)
    file_patterns: filename globs (case-insensitive) that mark a tracked document
    """

    auto_generate_ids: bool = True
    id_prefix: str = "PRD"
    normalize_checkboxes: bool = True
    cross_document_ids: bool = True
    id_floor: int = 100000
    file_patterns: Tuple[str, ...] = DEFAULT_FILE_PATTERNS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        env = os.environ if environ is None else environ
        patterns_raw = env.get("PRD_FILE_PATTERNS", "")
        patterns = tuple(p.strip() for p in patterns_raw.split(",") if p.strip())
        return cls(
            auto_generate_ids=_env_flag(env, "PRD_AUTO_GENERATE_IDS", True),
            id_prefix=env.get("PRD_ID_PREFIX", "").strip() or "PRD",
            normalize_checkboxes=_env_flag(env, "PRD_NORMALIZE_CHECKBOXES", True),
            cross_document_ids=_env_flag(env, "PRD_CROSS_DOCUMENT_IDS", True),
            id_floor=int(env.get("PRD_ID_FLOOR", "100000")),
            file_patterns=patterns or DEFAULT_FILE_PATTERNS,
        )
