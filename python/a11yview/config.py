# SPDX-License-Identifier: AGPL-3.0-only
from pathlib import Path
from typing import Dict, List, Optional, Any
import copy
try:
    import tomllib
except ImportError:
    import tomli as tomllib

from .types import ConfigurationError, RuleId

CONFIG_NAME = "a11yview.toml"

# Default configuration structure
DEFAULT_CONFIG = {
    "project": {
        "root": ".",
        "views": "app/views",
        "extensions": ["erb"],
        "global_paths": ["app/helpers", "app/assets/stylesheets"],
    },
    "checks": {
        # "rule-id": bool
    },
    "ignored_rules": [
        # {"rule": "...", "reason": "..."}
    ],
    "scan": {
        "jobs": 4,
        "state_file": "tmp/.a11yview_state.json",
        "debounce": 0.5,
        "use_git": True,
    },
    "routes": {
        # "/users/:id": "users#show"
    },
}

# Sections a profile may override
PROFILE_SECTIONS = ("project", "checks", "scan", "routes")


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


class Config:
    def __init__(self, data: Dict[str, Any], path: Path, profile: str = "test"):
        self.data = data
        self.path = path
        self.profile = profile
        self.base = path.parent
        self._enabled, self._ignored = self._validate()

    @classmethod
    def default(cls, path: Optional[Path] = None, profile: str = "test") -> "Config":
        return cls(copy.deepcopy(DEFAULT_CONFIG), path or Path.cwd() / CONFIG_NAME, profile)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], path: Optional[Path] = None, profile: str = "test") -> "Config":
        """Build from an already-parsed table (same shape as the TOML file)."""
        if not isinstance(raw, dict):
            raise ConfigurationError("configuration root must be a table")
        data = _merge(DEFAULT_CONFIG, {k: v for k, v in raw.items() if k != "profiles"})
        data["ignored_rules"] = list(raw.get("ignored_rules", []))
        profiles = raw.get("profiles", {})
        if not isinstance(profiles, dict):
            raise ConfigurationError("[profiles] must be a table")
        selected = profiles.get(profile) or {}
        if not isinstance(selected, dict):
            raise ConfigurationError(f"[profiles.{profile}] must be a table")
        for section in PROFILE_SECTIONS:
            if section in selected:
                data[section] = _merge(data.get(section, {}), selected[section])
        data["ignored_rules"].extend(selected.get("ignored_rules", []))
        return cls(data, path or Path.cwd() / CONFIG_NAME, profile)

    @classmethod
    def load(cls, path: Optional[Path] = None, profile: str = "test") -> "Config":
        """Load configuration from a11yview.toml.

        Without an explicit path the current directory is searched and a
        missing file means defaults. An explicit path must exist.
        """
        if path is None:
            path = Path.cwd() / CONFIG_NAME
            if not path.exists():
                return cls.default(path, profile)
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"No {CONFIG_NAME} found at {path}")

        try:
            with open(path, "rb") as f:
                raw = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(f"Failed to parse {path}: {e}") from e

        return cls.from_dict(raw, path, profile)

    def _validate(self):
        checks = self.data.get("checks", {})
        if not isinstance(checks, dict):
            raise ConfigurationError("[checks] must be a table")
        toggles: Dict[RuleId, bool] = {}
        for key, value in checks.items():
            rid = self._rule(key, "[checks]")
            if not isinstance(value, bool):
                raise ConfigurationError(f"[checks] {key} must be true or false, got {value!r}")
            toggles[rid] = value

        ignored: Dict[RuleId, str] = {}
        entries = self.data.get("ignored_rules", [])
        if not isinstance(entries, list):
            raise ConfigurationError("ignored_rules must be an array of tables")
        for entry in entries:
            if not isinstance(entry, dict):
                raise ConfigurationError("each [[ignored_rules]] entry must be a table")
            rid = self._rule(entry.get("rule"), "[[ignored_rules]]")
            reason = str(entry.get("reason") or "").strip()
            if not reason:
                raise ConfigurationError(f"[[ignored_rules]] {rid.value} requires a non-empty reason")
            ignored[rid] = reason

        jobs = self.scan.get("jobs", 1)
        if not isinstance(jobs, int) or isinstance(jobs, bool) or jobs < 1:
            raise ConfigurationError(f"[scan] jobs must be a positive integer, got {jobs!r}")
        debounce = self.scan.get("debounce", 0.5)
        if not isinstance(debounce, (int, float)) or debounce < 0:
            raise ConfigurationError(f"[scan] debounce must be a non-negative number, got {debounce!r}")
        if not isinstance(self.routes, dict) or not all(isinstance(v, str) for v in self.routes.values()):
            raise ConfigurationError("[routes] must map paths to 'controller#action' strings")

        enabled = [rid for rid in RuleId if toggles.get(rid, True)]
        return enabled, ignored

    @staticmethod
    def _rule(value: Any, where: str) -> RuleId:
        try:
            return RuleId.parse(value)
        except ValueError:
            raise ConfigurationError(f"{where}: unknown rule id {value!r}") from None

    @property
    def project(self) -> Dict[str, Any]:
        return self.data.get("project", {})

    @property
    def scan(self) -> Dict[str, Any]:
        return self.data.get("scan", {})

    @property
    def routes(self) -> Dict[str, str]:
        return self.data.get("routes", {})

    def resolve_path(self, relative_path: str) -> Path:
        return self.root / relative_path

    @property
    def root(self) -> Path:
        return (self.base / self.project.get("root", ".")).resolve()

    @property
    def views_dir(self) -> Path:
        return self.resolve_path(self.project.get("views", "app/views"))

    @property
    def extensions(self) -> List[str]:
        ext = self.project.get("extensions", ["erb"])
        if isinstance(ext, str):
            ext = [ext]
        return [str(e).lstrip(".") for e in ext]

    @property
    def global_paths(self) -> List[Path]:
        paths = self.project.get("global_paths", [])
        if isinstance(paths, str):
            paths = [paths]
        return [self.resolve_path(p) for p in paths]

    @property
    def state_path(self) -> Path:
        return self.resolve_path(self.scan.get("state_file", "tmp/.a11yview_state.json"))

    @property
    def jobs(self) -> int:
        return int(self.scan.get("jobs", 4))

    @property
    def debounce(self) -> float:
        return float(self.scan.get("debounce", 0.5))

    @property
    def use_git(self) -> bool:
        return bool(self.scan.get("use_git", True))

    def enabled_rule_ids(self) -> List[RuleId]:
        return list(self._enabled)

    def ignored_rules(self) -> Dict[RuleId, str]:
        return dict(self._ignored)
