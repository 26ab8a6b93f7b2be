import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from sharebench.config import DEFAULTS, RunConfiguration, load_run_config, validate_config
from sharebench.env_loader import load_env_files
from sharebench.exceptions import ConfigError


class TestValidateConfig(unittest.TestCase):

    def test_defaults_are_valid(self):
        validate_config(dict(DEFAULTS))

    def test_rejects_zero_passes(self):
        with self.assertRaises(ConfigError):
            RunConfiguration.from_dict({"passes": 0})

    def test_rejects_bad_lock_policy(self):
        with self.assertRaises(ConfigError):
            RunConfiguration.from_dict({"lock_policy": "maybe"})

    def test_rejects_bad_candidate_range(self):
        with self.assertRaises(ConfigError):
            RunConfiguration.from_dict({"candidate_addresses": ["10.0.0.0/99"]})

    def test_mail_requires_relay_and_recipients(self):
        with self.assertRaises(ConfigError):
            RunConfiguration.from_dict({"mail_enabled": True, "smtp_host": "relay"})

    def test_from_dict_freezes_collections(self):
        cfg = RunConfiguration.from_dict({
            "targets": [r"\\fs01\data", r"\\fs02\data"],
            "candidate_addresses": ["10.1.0.0/16"],
            "share_mount_root": "/mnt",
            "source_host": "src01",
        })
        self.assertEqual(cfg.targets, (r"\\fs01\data", r"\\fs02\data"))
        self.assertEqual(cfg.candidate_addresses, frozenset({"10.1.0.0/16"}))
        self.assertEqual(cfg.share_mount_root, Path("/mnt"))
        self.assertEqual(cfg.sample_log_path, Path("shared") / "SpeedTest.csv")
        with self.assertRaises(Exception):
            cfg.passes = 3  # type: ignore[misc]


class TestLoadRunConfig(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        env = {k: v for k, v in os.environ.items() if not k.startswith("SHAREBENCH_")}
        self._env = mock.patch.dict(os.environ, env, clear=True)
        self._env.start()

    def tearDown(self):
        self._env.stop()
        self._tmp.cleanup()

    def _settings(self, payload) -> Path:
        path = self.dir / "settings.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_settings_section_is_merged(self):
        path = self._settings({"sharebench": {"passes": 3, "targets": [r"\\fs01\data"]}, "other": {}})
        cfg = load_run_config(path, env_dir=self.dir)
        self.assertEqual(cfg.passes, 3)
        self.assertEqual(cfg.targets, (r"\\fs01\data",))
        self.assertEqual(cfg.drain_remote_port, 445)

    def test_env_overrides_settings_and_cli_overrides_env(self):
        path = self._settings({"sharebench": {"passes": 3}})
        os.environ["SHAREBENCH_PASSES"] = "5"
        os.environ["SHAREBENCH_DRAIN_ENABLED"] = "off"
        os.environ["SHAREBENCH_TARGETS"] = r"\\a\x, \\b\y"
        cfg = load_run_config(path, env_dir=self.dir)
        self.assertEqual(cfg.passes, 5)
        self.assertFalse(cfg.drain_enabled)
        self.assertEqual(cfg.targets, (r"\\a\x", r"\\b\y"))

        cfg = load_run_config(path, {"passes": 7, "targets": None}, env_dir=self.dir)
        self.assertEqual(cfg.passes, 7)

    def test_sbenv_file_does_not_override_explicit_env(self):
        (self.dir / ".sbenv").write_text("SHAREBENCH_PASSES=4\nSHAREBENCH_LOCK_POLICY='warn'\n", encoding="utf-8")
        os.environ["SHAREBENCH_PASSES"] = "2"
        cfg = load_run_config(env_dir=self.dir)
        self.assertEqual(cfg.passes, 2)
        self.assertEqual(cfg.lock_policy, "warn")

    def test_unknown_settings_key(self):
        path = self._settings({"sharebench": {"pases": 3}})
        with self.assertRaises(ConfigError):
            load_run_config(path, env_dir=self.dir)

    def test_invalid_env_value(self):
        os.environ["SHAREBENCH_PASSES"] = "many"
        with self.assertRaises(ConfigError):
            load_run_config(env_dir=self.dir)

    def test_missing_settings_file(self):
        with self.assertRaises(ConfigError):
            load_run_config(self.dir / "nope.json", env_dir=self.dir)


class TestEnvFiles(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        self._env = mock.patch.dict(os.environ, {}, clear=True)
        self._env.start()

    def tearDown(self):
        self._env.stop()
        self._tmp.cleanup()

    def test_parses_export_quotes_and_comments(self):
        (self.dir / ".sbenv").write_text(
            "# site defaults\n"
            "export SHAREBENCH_PASSES=3\n"
            "SHAREBENCH_SOURCE_HOST = src01  # this box\n"
            "SHAREBENCH_REPORT_TITLE=\"Nightly # 1\"\n",
            encoding="utf-8",
        )
        loaded = load_env_files(self.dir)
        self.assertEqual(loaded, {
            "SHAREBENCH_PASSES": "3",
            "SHAREBENCH_SOURCE_HOST": "src01",
            "SHAREBENCH_REPORT_TITLE": "Nightly # 1",
        })
        self.assertEqual(os.environ["SHAREBENCH_PASSES"], "3")

    def test_malformed_lines_are_skipped_with_warning(self):
        (self.dir / ".sbenv").write_text("SHAREBENCH_PASSES=2\njust some words\n9BAD=1\n=x\n", encoding="utf-8")
        with self.assertLogs("sharebench.env_loader", level="WARNING") as logs:
            loaded = load_env_files(self.dir)
        self.assertEqual(loaded, {"SHAREBENCH_PASSES": "2"})
        self.assertEqual(len(logs.records), 3)
        self.assertIn(".sbenv:2", logs.output[0])

    def test_local_file_wins_over_site_file(self):
        (self.dir / ".sbenv").write_text("SHAREBENCH_PASSES=2\n", encoding="utf-8")
        (self.dir / ".sbenv.local").write_text("SHAREBENCH_PASSES=6\n", encoding="utf-8")
        load_env_files(self.dir)
        self.assertEqual(os.environ["SHAREBENCH_PASSES"], "6")


if __name__ == "__main__":
    unittest.main()
