"""Tests for schemalint.config: schemalint.yml loading and CLI overrides."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from schemalint.config import (
    LintConfig,
    find_config,
    load_config,
    merge_parameters,
    parse_param_overrides,
)
from schemalint.engine.errors import ConfigError

if TYPE_CHECKING:
    from pathlib import Path


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "schemalint.yml"
    path.write_text(text)
    return path


class TestLoadConfig:
    def test_full_file(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "target: app.db\n"
            "dialect: sqlite\n"
            "rules_dirs: [lint/rules]\n"
            "select: [primary_key_missed]\n"
            "categories: naming\n"
            "parallelism: 4\n"
            "timeout: 30\n"
            "parameters:\n"
            "  column_limit_missed:\n"
            "    limit: 40\n"
            "    except:\n"
            "      - { table: legacy }\n",
        )
        config = load_config(path)
        assert config.target == str((tmp_path / "app.db").resolve())
        assert config.dialect == "sqlite"
        assert config.rules_dirs == ((tmp_path / "lint" / "rules").resolve(),)
        assert config.select == ("primary_key_missed",)
        assert config.categories == ("naming",)
        assert config.parallelism == 4
        assert config.timeout == 30.0
        assert config.parameters["column_limit_missed"]["limit"] == 40
        assert config.parameters["column_limit_missed"]["except"] == [{"table": "legacy"}]

    def test_url_target_kept(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "target: postgresql://lint@db/app\n")
        assert load_config(path).target == "postgresql://lint@db/app"

    def test_empty_file(self, tmp_path: Path) -> None:
        assert load_config(_write(tmp_path, "")) == LintConfig()

    @pytest.mark.parametrize(
        "text",
        [
            "- a\n- b\n",
            "parallelism: 0\n",
            "parallelism: true\n",
            "timeout: -1\n",
            "select: [1, 2]\n",
            "target: 5\n",
            "parameters: [a]\n",
            "parameters:\n  r: [1]\n",
            "target: [unclosed\n",
        ],
    )
    def test_invalid(self, tmp_path: Path, text: str) -> None:
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, text))

    def test_unknown_keys_warned(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="schemalint.config"):
            load_config(_write(tmp_path, "colour: blue\n"))
        assert "colour" in caplog.text

    def test_find_config(self, tmp_path: Path) -> None:
        assert find_config(tmp_path) is None
        path = _write(tmp_path, "")
        assert find_config(tmp_path) == path


class TestOverrides:
    def test_parse_param_overrides(self) -> None:
        parsed = parse_param_overrides(["column_limit_missed.limit=30", "a.b.prefix=x=y"])
        assert parsed == {"column_limit_missed": {"limit": "30"}, "a.b": {"prefix": "x=y"}}

    @pytest.mark.parametrize("item", ["limit=30", "rule.limit", ".limit=1", "rule.=1"])
    def test_invalid_param(self, item: str) -> None:
        with pytest.raises(ConfigError):
            parse_param_overrides([item])

    def test_merge_parameters(self) -> None:
        base = {"r": {"limit": 40, "prefix": "tmp_"}}
        merged = merge_parameters(base, {"r": {"limit": "30"}, "s": {"x": 1}})
        assert merged == {"r": {"limit": "30", "prefix": "tmp_"}, "s": {"x": 1}}
        assert base == {"r": {"limit": 40, "prefix": "tmp_"}}

    def test_with_overrides(self, tmp_path: Path) -> None:
        config = LintConfig(target="a.db", select=("x",), parallelism=2, rules_dirs=(tmp_path,))
        updated = config.with_overrides(target="b.db", categories=["naming"], timeout=1.0)
        assert updated.target == "b.db"
        assert updated.select == ("x",)
        assert updated.categories == ("naming",)
        assert updated.parallelism == 2
        assert updated.timeout == 1.0
        assert updated.rules_dirs == (tmp_path,)
