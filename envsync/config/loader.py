"""Config loader — parse and validate the declarative environments file.

Every top-level table is one deployment environment. An environment table
may hold three sections, in any combination::

    [production.variables]
    API_URL = "https://api.example.com"

    [production.secrets]
    DEPLOY_KEY = { env = "PROD_DEPLOY_KEY" }
    SENTRY_DSN = { value = "https://...", changed = true }

    [[production.entries]]
    name = "REGION"
    value = "eu-west-1"
    secret = false

TOML is the default format; ``.yaml``/``.yml`` files are read as YAML with
the same structure. Entry names are normalised to upper case because GitHub
treats them case-insensitively.

A key repeated verbatim in one TOML table is a TOML syntax error and comes
out as ``ParseError``; YAML accepts repeated keys, so those are reported as
``ValidationError`` together with the other rule violations.
"""

from __future__ import annotations

import os
import re
import tomllib
from collections.abc import Mapping
from pathlib import Path

import yaml

from envsync.errors import ConfigIssue, ParseError, ValidationError
from envsync.models import DesiredConfig, Environment, EnvironmentEntry

DEFAULT_CONFIG_PATH = "github_environments.toml"

SECTION_KEYS = ("variables", "secrets", "entries")
VALUE_KEYS = {"value", "env", "changed"}
ENTRY_KEYS = {"name", "value", "env", "secret", "changed"}

NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
RESERVED_PREFIX = "GITHUB_"

_FORMATS = {
    ".toml": "toml",
    ".yaml": "yaml",
    ".yml": "yaml",
}


class _DuplicateKeyLoader(yaml.SafeLoader):
    """SafeLoader that records repeated mapping keys instead of keeping the last one."""

    def __init__(self, stream):
        super().__init__(stream)
        self.duplicates: list[ConfigIssue] = []

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            first_seen: dict = {}
            for key_node, _ in node.value:
                if key_node.tag == "tag:yaml.org,2002:merge":
                    continue
                key = self.construct_object(key_node, deep=deep)
                line = key_node.start_mark.line + 1
                try:
                    if key in first_seen:
                        self.duplicates.append(
                            ConfigIssue(
                                f"line {line}",
                                f"duplicate key '{key}' (first declared at line {first_seen[key]})",
                            )
                        )
                    else:
                        first_seen[key] = line
                except TypeError:
                    # Unhashable keys are rejected by SafeLoader itself
                    continue
        return super().construct_mapping(node, deep=deep)


def load_config(path: str | Path, environ: Mapping[str, str] | None = None) -> DesiredConfig:
    """Read, parse, and validate a config file.

    Args:
        path: Location of the TOML or YAML file.
        environ: Mapping used to resolve ``env = "..."`` references.
                 Defaults to ``os.environ``.

    Raises:
        ParseError: File missing, unreadable, unknown format, or malformed.
        ValidationError: File parsed but violates the config rules.
    """
    path = Path(path)
    fmt = _FORMATS.get(path.suffix.lower())
    if fmt is None:
        raise ParseError(
            f"Unsupported config format '{path.suffix or path.name}' "
            f"(expected one of: {', '.join(sorted(_FORMATS))})"
        )
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ParseError(f"Config file not found: {path}") from None
    except OSError as e:
        raise ParseError(f"Could not read config file {path}: {e}") from e

    return parse_config(text, fmt=fmt, source=path, environ=environ)


def parse_config(
    text: str,
    fmt: str = "toml",
    source: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> DesiredConfig:
    """Parse config text in the given format into a validated DesiredConfig."""
    where = str(source) if source else "<config>"
    duplicates: list[ConfigIssue] = []
    if fmt == "toml":
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ParseError(f"Malformed TOML in {where}: {e}") from e
    elif fmt == "yaml":
        loader = _DuplicateKeyLoader(text)
        try:
            data = loader.get_single_data()
        except yaml.YAMLError as e:
            raise ParseError(f"Malformed YAML in {where}: {e}") from e
        finally:
            loader.dispose()
        if data is None:
            data = {}
        duplicates = loader.duplicates
    else:
        raise ParseError(f"Unsupported config format '{fmt}'")

    if not isinstance(data, dict):
        raise ParseError(f"Top level of {where} must be a table of environments")

    try:
        config = build_config(data, source=source, environ=environ)
    except ValidationError as e:
        if duplicates:
            raise ValidationError(duplicates + e.issues) from None
        raise
    if duplicates:
        raise ValidationError(duplicates)
    return config


def build_config(
    data: dict,
    source: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> DesiredConfig:
    """Validate an already-parsed document and build the DesiredConfig.

    All issues are collected before raising so a single run reports every
    problem in the file.
    """
    env_vars = os.environ if environ is None else environ
    issues: list[ConfigIssue] = []
    environments: list[Environment] = []

    if not data:
        issues.append(ConfigIssue("", "config declares no environments"))

    for env_name, body in data.items():
        if not isinstance(env_name, str) or not env_name.strip():
            issues.append(ConfigIssue(str(env_name), "environment name must be a non-empty string"))
            continue
        if not isinstance(body, dict):
            issues.append(ConfigIssue(env_name, "environment must be a table"))
            continue
        entries = _parse_environment(env_name, body, env_vars, issues)
        environments.append(Environment(name=env_name, entries=tuple(entries)))

    if issues:
        raise ValidationError(issues)

    return DesiredConfig(environments=tuple(environments), source=source)


# ── Environment sections ─────────────────────────────────────────────


def _parse_environment(
    env_name: str,
    body: dict,
    environ: Mapping[str, str],
    issues: list[ConfigIssue],
) -> list[EnvironmentEntry]:
    for key in body:
        if key not in SECTION_KEYS:
            issues.append(
                ConfigIssue(
                    f"{env_name}.{key}",
                    f"unknown section (expected one of: {', '.join(SECTION_KEYS)})",
                )
            )

    entries: list[EnvironmentEntry] = []
    seen: dict[str, str] = {}

    def add(entry: EnvironmentEntry | None, path: str) -> None:
        if entry is None:
            return
        if entry.name in seen:
            issues.append(
                ConfigIssue(path, f"duplicate entry name '{entry.name}' (first declared at {seen[entry.name]})")
            )
            return
        seen[entry.name] = path
        entries.append(entry)

    for section, is_secret in (("variables", False), ("secrets", True)):
        table = body.get(section)
        if table is None:
            continue
        if not isinstance(table, dict):
            issues.append(ConfigIssue(f"{env_name}.{section}", "must be a table of NAME = value"))
            continue
        for raw_name, raw_value in table.items():
            path = f"{env_name}.{section}.{raw_name}"
            add(_parse_keyed_entry(raw_name, raw_value, is_secret, path, environ, issues), path)

    listed = body.get("entries")
    if listed is not None:
        if not isinstance(listed, list):
            issues.append(ConfigIssue(f"{env_name}.entries", "must be a list of entry tables"))
        else:
            for i, item in enumerate(listed):
                path = f"{env_name}.entries[{i}]"
                add(_parse_listed_entry(item, path, environ, issues), path)

    return entries


def _parse_keyed_entry(
    raw_name,
    raw_value,
    is_secret: bool,
    path: str,
    environ: Mapping[str, str],
    issues: list[ConfigIssue],
) -> EnvironmentEntry | None:
    name = _check_name(raw_name, path, issues)

    changed = False
    if isinstance(raw_value, dict):
        unknown = set(raw_value) - VALUE_KEYS
        if unknown:
            issues.append(ConfigIssue(path, f"unknown key(s): {', '.join(sorted(map(str, unknown)))}"))
            return None
        changed = _check_changed(raw_value, is_secret, path, issues)
        value = _resolve_value(raw_value, path, environ, issues)
    else:
        value = _render_value(raw_value, path, issues)

    if name is None or value is None or changed is None:
        return None
    return EnvironmentEntry(name=name, value=value, is_secret=is_secret, changed=changed)


def _parse_listed_entry(
    item,
    path: str,
    environ: Mapping[str, str],
    issues: list[ConfigIssue],
) -> EnvironmentEntry | None:
    if not isinstance(item, dict):
        issues.append(ConfigIssue(path, "entry must be a table"))
        return None
    unknown = set(item) - ENTRY_KEYS
    if unknown:
        issues.append(ConfigIssue(path, f"unknown key(s): {', '.join(sorted(map(str, unknown)))}"))
        return None
    if "name" not in item:
        issues.append(ConfigIssue(path, "missing required field 'name'"))
        return None

    is_secret = item.get("secret", False)
    if not isinstance(is_secret, bool):
        issues.append(ConfigIssue(f"{path}.secret", "must be true or false"))
        return None

    name = _check_name(item["name"], path, issues)
    changed = _check_changed(item, is_secret, path, issues)
    value = _resolve_value(item, path, environ, issues)

    if name is None or value is None or changed is None:
        return None
    return EnvironmentEntry(name=name, value=value, is_secret=is_secret, changed=changed)


# ── Field checks ─────────────────────────────────────────────────────


def _check_name(raw_name, path: str, issues: list[ConfigIssue]) -> str | None:
    if not isinstance(raw_name, str) or not raw_name.strip():
        issues.append(ConfigIssue(path, "entry name must be a non-empty string"))
        return None
    name = raw_name.strip()
    if not NAME_PATTERN.match(name):
        issues.append(
            ConfigIssue(path, f"invalid name '{name}' (letters, digits and underscores only, not starting with a digit)")
        )
        return None
    if name.upper().startswith(RESERVED_PREFIX):
        issues.append(ConfigIssue(path, f"names starting with '{RESERVED_PREFIX}' are reserved by GitHub"))
        return None
    return name.upper()


def _check_changed(table: dict, is_secret: bool, path: str, issues: list[ConfigIssue]) -> bool | None:
    if "changed" not in table:
        return False
    changed = table["changed"]
    if not isinstance(changed, bool):
        issues.append(ConfigIssue(f"{path}.changed", "must be true or false"))
        return None
    if changed and not is_secret:
        issues.append(ConfigIssue(f"{path}.changed", "only applies to secrets"))
        return None
    return changed


def _resolve_value(
    table: dict,
    path: str,
    environ: Mapping[str, str],
    issues: list[ConfigIssue],
) -> str | None:
    has_value = "value" in table
    has_env = "env" in table
    if has_value and has_env:
        issues.append(ConfigIssue(path, "set either 'value' or 'env', not both"))
        return None
    if has_env:
        var = table["env"]
        if not isinstance(var, str) or not var:
            issues.append(ConfigIssue(f"{path}.env", "must name an environment variable"))
            return None
        if var not in environ:
            issues.append(ConfigIssue(f"{path}.env", f"environment variable '{var}' is not set"))
            return None
        return _render_value(environ[var], path, issues)
    if not has_value:
        issues.append(ConfigIssue(path, "missing required field 'value' (or 'env')"))
        return None
    return _render_value(table["value"], path, issues)


def _render_value(raw, path: str, issues: list[ConfigIssue]) -> str | None:
    # bool before int: bool is an int subclass
    if isinstance(raw, bool):
        value = "true" if raw else "false"
    elif isinstance(raw, (int, float)):
        value = str(raw)
    elif isinstance(raw, str):
        value = raw
    else:
        issues.append(ConfigIssue(path, f"value must be a string, number or boolean, got {type(raw).__name__}"))
        return None
    if value == "":
        issues.append(ConfigIssue(path, "value must not be empty"))
        return None
    return value
