"""Tests for prbench.config."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from prbench.config import (
    DEFAULT_PORT,
    AppConfig,
    load_config,
    load_config_file,
    validate_config,
)
from prbench.errors import ConfigurationError

ENV = {
    "REPO_OWNER": "icebob",
    "REPO_NAME": "benchmarkify",
    "SUITE_FILENAME": "benchmark/suite.py",
    "GITHUB_TOKEN": "secret-token",
}


class ConfigFileTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmpdir.name)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def write(self, text: str) -> Path:
        path = self.dir / "prbench.yaml"
        path.write_text(text, encoding="utf-8")
        return path


class TestLoadConfigFromEnv(unittest.TestCase):
    def test_required_from_env(self) -> None:
        config = load_config(environ=ENV)
        self.assertEqual(config.repo_owner, "icebob")
        self.assertEqual(config.repo_name, "benchmarkify")
        self.assertEqual(config.suite_filename, "benchmark/suite.py")
        self.assertEqual(config.github_token, "secret-token")
        self.assertEqual(config.repo_slug, "icebob/benchmarkify")

    def test_defaults(self) -> None:
        config = load_config(environ=ENV)
        self.assertEqual(config.port, DEFAULT_PORT)
        self.assertEqual(config.host, "0.0.0.0")
        self.assertEqual(config.scratch_dir, Path("tmp"))
        self.assertIsNone(config.clone_depth)
        self.assertEqual(config.suite_timeout, 1800)

    def test_optional_env_values_coerced(self) -> None:
        env = dict(
            ENV,
            PRBENCH_PORT="8080",
            PRBENCH_CLONE_DEPTH="20",
            PRBENCH_SCRATCH_DIR="/var/tmp/prbench",
        )
        config = load_config(environ=env)
        self.assertEqual(config.port, 8080)
        self.assertEqual(config.clone_depth, 20)
        self.assertEqual(config.scratch_dir, Path("/var/tmp/prbench"))

    def test_all_missing_reported_together(self) -> None:
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(environ={})
        message = str(ctx.exception)
        for var in ("REPO_OWNER", "REPO_NAME", "SUITE_FILENAME", "GITHUB_TOKEN"):
            self.assertIn(var, message)

    def test_token_optional(self) -> None:
        env = {k: v for k, v in ENV.items() if k != "GITHUB_TOKEN"}
        config = load_config(environ=env, require_token=False)
        self.assertEqual(config.github_token, "")

    def test_empty_value_counts_as_missing(self) -> None:
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(environ=dict(ENV, REPO_NAME=""))
        self.assertIn("repo_name", str(ctx.exception))

    def test_bad_integer(self) -> None:
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(environ=dict(ENV, PRBENCH_PORT="http"))
        self.assertIn("Not an integer", str(ctx.exception))

    def test_token_not_in_repr(self) -> None:
        config = load_config(environ=ENV)
        self.assertNotIn("secret-token", repr(config))


class TestLoadConfigFile(ConfigFileTestCase):
    def test_file_values(self) -> None:
        path = self.write(
            "repo_owner: someone\n"
            "repo_name: thing\n"
            "suite_filename: bench/run.py\n"
            "suite_timeout: 60\n"
        )
        config = load_config(config_file=path, environ={}, require_token=False)
        self.assertEqual(config.repo_slug, "someone/thing")
        self.assertEqual(config.suite_timeout, 60)

    def test_precedence(self) -> None:
        path = self.write("repo_owner: from-file\nport: 1111\nhost: 127.0.0.1\n")
        env = dict(ENV, REPO_OWNER="from-env", PRBENCH_PORT="2222")
        config = load_config(config_file=path, environ=env, overrides={"port": 3333, "host": None})
        self.assertEqual(config.repo_owner, "from-env")
        self.assertEqual(config.port, 3333)
        self.assertEqual(config.host, "127.0.0.1")

    def test_unknown_keys_warned(self) -> None:
        path = self.write("colour: blue\n")
        with self.assertLogs("prbench.config", level="WARNING") as logs:
            load_config(config_file=path, environ=ENV)
        self.assertIn("colour", logs.output[0])

    def test_unknown_override_ignored(self) -> None:
        config = load_config(environ=ENV, overrides={"colour": "blue"})
        self.assertFalse(hasattr(config, "colour"))

    def test_empty_file(self) -> None:
        self.assertEqual(load_config_file(self.write("")), {})

    def test_missing_file(self) -> None:
        with self.assertRaises(ConfigurationError):
            load_config_file(self.dir / "nope.yaml")

    def test_invalid_yaml(self) -> None:
        with self.assertRaises(ConfigurationError):
            load_config_file(self.write("key: [unclosed\n"))

    def test_not_a_mapping(self) -> None:
        with self.assertRaises(ConfigurationError) as ctx:
            load_config_file(self.write("- a\n- b\n"))
        self.assertIn("mapping", str(ctx.exception))


class TestValidateConfig(unittest.TestCase):
    def _valid(self) -> AppConfig:
        return AppConfig(
            repo_owner="o", repo_name="r", suite_filename="bench.py", github_token="t"
        )

    def test_valid(self) -> None:
        self.assertEqual(validate_config(self._valid()), [])

    def test_absolute_suite_filename(self) -> None:
        config = self._valid()
        config.suite_filename = "/etc/passwd"
        fields = [p.field for p in validate_config(config)]
        self.assertEqual(fields, ["suite_filename"])

    def test_port_range(self) -> None:
        config = self._valid()
        config.port = 70000
        self.assertEqual([p.field for p in validate_config(config)], ["port"])

    def test_timeouts_positive(self) -> None:
        config = self._valid()
        config.clone_timeout = 0
        config.suite_timeout = -1
        fields = [p.field for p in validate_config(config)]
        self.assertEqual(fields, ["clone_timeout", "suite_timeout"])

    def test_clone_depth(self) -> None:
        config = self._valid()
        config.clone_depth = 0
        self.assertEqual([p.field for p in validate_config(config)], ["clone_depth"])

    def test_suite_command_placeholder(self) -> None:
        config = self._valid()
        config.suite_command = "make bench"
        self.assertEqual([p.field for p in validate_config(config)], ["suite_command"])

    def test_api_url(self) -> None:
        config = self._valid()
        config.api_url = "api.github.com"
        self.assertEqual([p.field for p in validate_config(config)], ["api_url"])
