from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "runbook.yaml"

DEFAULT_COMMENT_STYLES: Dict[str, str] = {
    "copilot": "//",
    "bash": "#",
    "sh": "#",
    "shell": "#",
    "javascript": "//",
    "js": "//",
    "python": "#",
    "py": "#",
    "typescript": "//",
    "ts": "//",
    "ruby": "#",
    "rb": "#",
    "perl": "#",
    "r": "#",
    "yaml": "#",
    "yml": "#",
    "powershell": "#",
    "ps1": "#",
}

DEFAULT_FILE_EXTENSIONS: Dict[str, str] = {
    "javascript": "js",
    "js": "js",
    "python": "py",
    "py": "py",
    "bash": "sh",
    "shell": "sh",
    "sh": "sh",
}

DEFAULT_SHEBANGS: Dict[str, str] = {
    "javascript": "#!/usr/bin/env node\n",
    "js": "#!/usr/bin/env node\n",
    "python": "#!/usr/bin/env python3\n",
    "py": "#!/usr/bin/env python3\n",
    "bash": "#!/bin/bash\n",
    "shell": "#!/bin/bash\n",
    "sh": "#!/bin/bash\n",
}

DEFAULT_INTERPRETERS: Dict[str, List[str]] = {
    "javascript": ["node"],
    "js": ["node"],
    "python": ["python3"],
    "py": ["python3"],
}

SHELL_LANGUAGES = ("bash", "shell", "sh")

DEFAULT_SUPPORTED_LANGUAGES = ["javascript", "js", "bash", "python", "shell", "copilot"]


@dataclass
class Configuration:
    """Runbook settings; every mapping merges user values over the defaults."""

    comment_styles: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_COMMENT_STYLES)
    )
    file_extensions: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_FILE_EXTENSIONS)
    )
    shebangs: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SHEBANGS))
    interpreters: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_INTERPRETERS.items()}
    )
    default_shebang: str = "#!/bin/bash\n"
    default_extension: str = "sh"
    shell: str = "/bin/bash"
    supported_languages: List[str] = field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_LANGUAGES)
    )
    prompt_languages: List[str] = field(default_factory=lambda: ["copilot"])
    default_timeout: Optional[float] = None
    enable_markdown_rendering: bool = True

    def comment_style(self, language: str) -> str:
        return self.comment_styles.get(language, "//")

    def is_prompt_language(self, language: str) -> bool:
        return language in self.prompt_languages

    def shebang_for(self, language: str) -> str:
        return self.shebangs.get(language, self.default_shebang)

    def extension_for(self, language: str) -> str:
        return self.file_extensions.get(language, self.default_extension)

    @classmethod
    def from_mapping(cls, data: dict) -> "Configuration":
        cfg = cls()
        langs = data.get("languages") or {}
        execution = data.get("execution") or {}
        output = data.get("output") or {}
        if not all(isinstance(m, dict) for m in (langs, execution, output)):
            raise ConfigError("languages, execution and output must be mappings")

        cfg.comment_styles.update(_str_map(langs.get("comment_styles")))
        cfg.file_extensions.update(_str_map(langs.get("file_extensions")))
        cfg.shebangs.update(_str_map(langs.get("shebangs")))
        for lang, cmd in (langs.get("interpreters") or {}).items():
            cfg.interpreters[str(lang)] = (
                [cmd] if isinstance(cmd, str) else [str(c) for c in cmd]
            )
        if "default_shebang" in langs:
            cfg.default_shebang = str(langs["default_shebang"])
        if "default_extension" in langs:
            cfg.default_extension = str(langs["default_extension"])
        if "shell" in langs:
            cfg.shell = str(langs["shell"])
        if "supported" in langs:
            cfg.supported_languages = [str(x) for x in langs["supported"]]
        if "prompt" in langs:
            cfg.prompt_languages = [str(x) for x in langs["prompt"]]

        timeout = execution.get("default_timeout")
        if timeout is not None:
            try:
                cfg.default_timeout = float(timeout)
            except (TypeError, ValueError):
                raise ConfigError(
                    f"execution.default_timeout must be a number, got {timeout!r}"
                )
        if "enable_markdown_rendering" in output:
            cfg.enable_markdown_rendering = bool(output["enable_markdown_rendering"])
        return cfg


def _str_map(m: object) -> Dict[str, str]:
    if not m:
        return {}
    if not isinstance(m, dict):
        raise ConfigError(f"Expected a mapping, got {type(m).__name__}")
    return {str(k): str(v) for k, v in m.items()}


def load_config(
    path: str | Path | None = None, workspace_root: str | Path | None = None
) -> Configuration:
    """Load settings from ``path`` or ``<workspace_root>/runbook.yaml``.

    A missing default file yields the defaults; a missing explicit path or an
    unreadable file raises ConfigError.
    """
    if path is None:
        candidate = Path(workspace_root or ".") / CONFIG_FILENAME
        if not candidate.exists():
            return Configuration()
        path = candidate
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config {p}: {e}") from e
    try:
        data = YAML(typ="safe").load(text)
    except YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {p} must be a mapping")
    logger.debug("Loaded config from %s", p)
    return Configuration.from_mapping(data)
