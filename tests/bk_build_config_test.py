# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""Tests for buildkit.build_config module."""

from __future__ import annotations

from pathlib import Path

import pytest

from buildkit.build_config import (
    DEFAULT_IGNORE,
    DEFAULT_WATCH,
    load_build_config,
    parse_build_config,
)
from buildkit.errors import BuildKitError, E

TOML = Path('/pkg/build.config.toml')
JSON = Path('/pkg/build.config.json')


class TestParseBuildConfig:
    """Tests for parse_build_config()."""

    def test_shorthand_string_command(self) -> None:
        """A top-level command is one target named 'default'."""
        config = parse_build_config('command = "tsc -p ."\n', TOML)
        assert len(config.targets) == 1
        target = config.targets[0]
        assert target.name == 'default'
        assert target.command == ('tsc', '-p', '.')
        assert target.watch == DEFAULT_WATCH
        assert target.ignore == DEFAULT_IGNORE
        assert target.timeout is None

    def test_list_command(self) -> None:
        """A command can be an argument list."""
        config = parse_build_config('command = ["rollup", "-c", "my config.js"]\n', TOML)
        assert config.targets[0].command == ('rollup', '-c', 'my config.js')

    def test_multiple_targets(self) -> None:
        """[[target]] tables become targets in order."""
        text = """
[[target]]
name = "lib"
command = ["tsc"]
watch = ["src/**/*.ts"]

[[target]]
command = "sass in.scss out.css"
timeout = 30
env = { NODE_OPTIONS = "--max-old-space-size=4096" }
"""
        config = parse_build_config(text, TOML)
        assert [t.name for t in config.targets] == ['lib', 'target-1']
        assert config.targets[0].watch == ('src/**/*.ts',)
        assert config.targets[1].timeout == 30.0
        assert config.targets[1].env == {'NODE_OPTIONS': '--max-old-space-size=4096'}

    def test_single_target_table_named_default(self) -> None:
        """One unnamed [[target]] is 'default'."""
        config = parse_build_config('[[target]]\ncommand = "make"\n', TOML)
        assert config.targets[0].name == 'default'

    def test_json(self) -> None:
        """JSON files use the same keys."""
        config = parse_build_config('{"target": [{"name": "x", "command": ["node", "build.js"]}]}', JSON)
        assert config.targets[0].command == ('node', 'build.js')
        assert config.path == JSON

    def test_unknown_key_suggests(self) -> None:
        """Typos get a 'did you mean' hint."""
        with pytest.raises(BuildKitError) as exc_info:
            parse_build_config('comand = "make"\n', TOML)
        assert exc_info.value.code is E.CONFIG_INVALID_KEY
        assert "'command'" in exc_info.value.hint

    def test_unknown_target_key(self) -> None:
        """Keys inside targets are checked too."""
        with pytest.raises(BuildKitError) as exc_info:
            parse_build_config('[[target]]\ncommand = "make"\nwatcher = []\n', TOML)
        assert exc_info.value.code is E.CONFIG_INVALID_KEY

    def test_missing_command(self) -> None:
        """A target without a command is invalid."""
        with pytest.raises(BuildKitError) as exc_info:
            parse_build_config('watch = ["src/**"]\n', TOML)
        assert exc_info.value.code is E.CONFIG_INVALID_VALUE

    @pytest.mark.parametrize(
        'text',
        [
            'command = ""\n',
            'command = []\n',
            'command = 3\n',
            'command = "make"\nwatch = "src"\n',
            'command = "make"\ntimeout = 0\n',
            'command = "make"\ntimeout = true\n',
            'command = "make"\nenv = { A = 1 }\n',
            'command = "make"\nname = ""\n',
            'target = []\n',
            'command = "make"\n[[target]]\ncommand = "make"\n',
        ],
    )
    def test_invalid_values(self, text: str) -> None:
        """Bad values raise CONFIG_INVALID_VALUE."""
        with pytest.raises(BuildKitError) as exc_info:
            parse_build_config(text, TOML)
        assert exc_info.value.code is E.CONFIG_INVALID_VALUE

    def test_syntax_error(self) -> None:
        """Unparseable files raise CONFIG_PARSE_ERROR."""
        with pytest.raises(BuildKitError) as exc_info:
            parse_build_config('command = [', TOML)
        assert exc_info.value.code is E.CONFIG_PARSE_ERROR

    def test_json_syntax_error(self) -> None:
        """Broken JSON raises CONFIG_PARSE_ERROR."""
        with pytest.raises(BuildKitError) as exc_info:
            parse_build_config('{', JSON)
        assert exc_info.value.code is E.CONFIG_PARSE_ERROR

    def test_json_top_level_must_be_object(self) -> None:
        """A JSON array is not a build config."""
        with pytest.raises(BuildKitError):
            parse_build_config('[]', JSON)


class TestLoadBuildConfig:
    """Tests for load_build_config()."""

    @pytest.mark.asyncio
    async def test_loads_file(self, tmp_path: Path) -> None:
        """The file is read and parsed."""
        path = tmp_path / 'build.config.toml'
        path.write_text('command = "make all"\n', encoding='utf-8')
        config = await load_build_config(path)
        assert config.targets[0].command == ('make', 'all')

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file is a parse error."""
        with pytest.raises(BuildKitError) as exc_info:
            await load_build_config(tmp_path / 'build.config.toml')
        assert exc_info.value.code is E.CONFIG_PARSE_ERROR

    @pytest.mark.asyncio
    async def test_invalid_utf8(self, tmp_path: Path) -> None:
        """Undecodable bytes are a parse error naming the file."""
        path = tmp_path / 'build.config.toml'
        path.write_bytes(b'command = "\xff"\n')
        with pytest.raises(BuildKitError) as exc_info:
            await load_build_config(path)
        assert exc_info.value.code is E.CONFIG_PARSE_ERROR
        assert 'not valid UTF-8' in str(exc_info.value)
