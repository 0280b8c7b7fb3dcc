"""
Engine settings.

Read once from environment variables and bound into each SchemaModel at
load time, so a loaded schema never consults the environment again.
Invalid values fall back to defaults.
"""

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


DEFAULT_DATE_FORMATS = ("%Y-%m-%d",)
DEFAULT_BOOLEAN_ALIASES = MappingProxyType({"yes": "true", "no": "false"})


def _env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _env_int(key: str, default: int) -> int:
    v = _env_str(key)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _parse_aliases(raw: Optional[str]) -> Mapping[str, str]:
    # "yes=true,no=false,y=true"
    if not raw:
        return DEFAULT_BOOLEAN_ALIASES
    aliases = {}
    for pair in raw.split(","):
        alias, sep, target = pair.partition("=")
        target = target.strip().lower()
        if not sep or target not in ("true", "false") or not alias.strip():
            return DEFAULT_BOOLEAN_ALIASES
        aliases[alias.strip().lower()] = target
    return MappingProxyType(aliases)


@dataclass(frozen=True)
class EngineSettings:
    """
    Engine configuration.

    Attributes:
        log_level: Logging level name for the console harness
        definitions_dir: Directory holding questionnaire definition files
        multi_choice_delimiter: Separator for multi-choice string values
        date_formats: strptime formats tried when a question declares none
        max_loop_iterations: Hard cap on loop instances per loop
        boolean_aliases: Extra spellings resolved before the true/false check
            (copied into a read-only MappingProxyType)
    """
    log_level: str = "INFO"
    definitions_dir: str = "data/questionnaires"
    multi_choice_delimiter: str = ","
    date_formats: Tuple[str, ...] = DEFAULT_DATE_FORMATS
    max_loop_iterations: int = 50
    boolean_aliases: Mapping[str, str] = field(default_factory=lambda: DEFAULT_BOOLEAN_ALIASES)

    def __post_init__(self):
        object.__setattr__(self, "boolean_aliases", MappingProxyType(dict(self.boolean_aliases)))

    @staticmethod
    def from_env() -> "EngineSettings":
        formats_raw = _env_str("QUESTENGINE_DATE_FORMATS")
        date_formats = tuple(f for f in formats_raw.split("|") if f) if formats_raw else DEFAULT_DATE_FORMATS

        max_loops = _env_int("QUESTENGINE_MAX_LOOP_ITERATIONS", 50)
        if max_loops < 1:
            max_loops = 50

        return EngineSettings(
            log_level=(_env_str("QUESTENGINE_LOG_LEVEL", "INFO") or "INFO").upper(),
            definitions_dir=_env_str("QUESTENGINE_DEFINITIONS_DIR", "data/questionnaires") or "data/questionnaires",
            multi_choice_delimiter=_env_str("QUESTENGINE_MULTI_CHOICE_DELIMITER", ",") or ",",
            date_formats=date_formats or DEFAULT_DATE_FORMATS,
            max_loop_iterations=max_loops,
            boolean_aliases=_parse_aliases(_env_str("QUESTENGINE_BOOLEAN_ALIASES")),
        )
