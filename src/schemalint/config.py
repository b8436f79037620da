"""Configuration file loader: ``schemalint.yml`` in the project directory.

Example::

    target: app.db              # SQLite file or SQLAlchemy URL
    dialect: sqlite             # built-in catalog, detected from target if omitted
    rules_dirs: [lint/rules]    # extra catalogs, relative to this file
    select: [primary_key_missed, column_limit_missed]
    categories: [naming]
    parallelism: 4
    timeout: 30                 # seconds per rule
    parameters:
      column_limit_missed:
        limit: 40
        except:
          - { table: legacy_users }

CLI options override file values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from schemalint.engine.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)

CONFIG_FILENAMES: tuple[str, ...] = ("schemalint.yml", "schemalint.yaml")
_KNOWN_KEYS: frozenset[str] = frozenset(
    {
        "target",
        "dialect",
        "rules_dirs",
        "select",
        "categories",
        "parallelism",
        "timeout",
        "parameters",
    }
)


@dataclass(frozen=True)
class LintConfig:
    """Resolved settings for one lint run."""

    target: str | None = None
    dialect: str | None = None
    rules_dirs: tuple[Path, ...] = ()
    select: tuple[str, ...] | None = None
    categories: tuple[str, ...] | None = None
    parallelism: int = 1
    timeout: float | None = None
    parameters: Mapping[str, Mapping[str, object]] = field(default_factory=dict)

    def with_overrides(
        self,
        *,
        target: str | None = None,
        dialect: str | None = None,
        rules_dirs: Iterable[Path] = (),
        select: Iterable[str] = (),
        categories: Iterable[str] = (),
        parallelism: int | None = None,
        timeout: float | None = None,
        parameters: Mapping[str, Mapping[str, object]] | None = None,
    ) -> LintConfig:
        """Return a copy with CLI values layered on top of file values."""
        select_t = tuple(select)
        categories_t = tuple(categories)
        merged = merge_parameters(self.parameters, parameters or {})
        return replace(
            self,
            target=target if target is not None else self.target,
            dialect=dialect if dialect is not None else self.dialect,
            rules_dirs=self.rules_dirs + tuple(rules_dirs),
            select=select_t if select_t else self.select,
            categories=categories_t if categories_t else self.categories,
            parallelism=parallelism if parallelism is not None else self.parallelism,
            timeout=timeout if timeout is not None else self.timeout,
            parameters=merged,
        )


def find_config(project_root: Path) -> Path | None:
    """Return the config file in *project_root*, or ``None``."""
    for name in CONFIG_FILENAMES:
        candidate = project_root / name
        if candidate.is_file():
            return candidate
    return None


def _string_list(data: dict[str, object], key: str) -> tuple[str, ...] | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        msg = f"'{key}' must be a list of strings"
        raise ConfigError(msg)
    return tuple(value)


def _parse_parameters(value: object) -> dict[str, dict[str, object]]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        msg = "'parameters' must map rule ids to parameter mappings"
        raise ConfigError(msg)
    parameters: dict[str, dict[str, object]] = {}
    for rule_id, values in value.items():
        if values is None:
            values = {}
        if not isinstance(values, dict):
            msg = f"parameters for rule '{rule_id}' must be a mapping"
            raise ConfigError(msg)
        parameters[str(rule_id)] = {str(k): v for k, v in values.items()}
    return parameters


def load_config(path: Path) -> LintConfig:
    """Parse a ``schemalint.yml`` file.

    Raises :class:`ConfigError` on unreadable files or invalid values.
    """
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Cannot read {path}: {exc}"
        raise ConfigError(msg) from exc

    if data is None:
        return LintConfig()
    if not isinstance(data, dict):
        msg = f"{path.name} must be a YAML mapping"
        raise ConfigError(msg)

    for key in sorted(str(k) for k in data if k not in _KNOWN_KEYS):
        logger.warning("Ignoring unknown key '%s' in %s", key, path)

    target = data.get("target")
    dialect = data.get("dialect")
    if target is not None and not isinstance(target, str):
        msg = "'target' must be a string"
        raise ConfigError(msg)
    if dialect is not None and not isinstance(dialect, str):
        msg = "'dialect' must be a string"
        raise ConfigError(msg)

    # A relative SQLite path is relative to the config file, URLs are kept as is.
    if target is not None and "://" not in target:
        target = str((path.parent / target).resolve())

    dirs = _string_list(data, "rules_dirs") or ()
    rules_dirs = tuple((path.parent / d).resolve() for d in dirs)

    parallelism = data.get("parallelism", 1)
    if isinstance(parallelism, bool) or not isinstance(parallelism, int) or parallelism < 1:
        msg = "'parallelism' must be a positive integer"
        raise ConfigError(msg)

    timeout = data.get("timeout")
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            msg = "'timeout' must be a positive number of seconds"
            raise ConfigError(msg)
        timeout = float(timeout)

    return LintConfig(
        target=target,
        dialect=dialect,
        rules_dirs=rules_dirs,
        select=_string_list(data, "select"),
        categories=_string_list(data, "categories"),
        parallelism=parallelism,
        timeout=timeout,
        parameters=_parse_parameters(data.get("parameters")),
    )


def parse_param_overrides(items: Iterable[str]) -> dict[str, dict[str, object]]:
    """Parse ``rule_id.name=value`` strings from the command line.

    Values stay raw strings; the renderer converts them to the declared type.
    """
    parameters: dict[str, dict[str, object]] = {}
    for item in items:
        key, sep, value = item.partition("=")
        rule_id, dot, name = key.strip().rpartition(".")
        if not sep or not dot or not rule_id or not name:
            msg = f"Invalid parameter '{item}', expected RULE.NAME=VALUE"
            raise ConfigError(msg)
        parameters.setdefault(rule_id, {})[name] = value
    return parameters


def merge_parameters(
    base: Mapping[str, Mapping[str, object]],
    overrides: Mapping[str, Mapping[str, object]],
) -> dict[str, dict[str, object]]:
    """Merge two per-rule parameter mappings; *overrides* wins per name."""
    merged: dict[str, dict[str, object]] = {k: dict(v) for k, v in base.items()}
    for rule_id, values in overrides.items():
        merged.setdefault(rule_id, {}).update(values)
    return merged
