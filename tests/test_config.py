"""Tests for the workspace YAML config and env-var helpers."""

import yaml

from omakure import config


class TestLoadConfig:
    def test_defaults_when_missing(self, tmp_path):
        cfg = config.load_config(tmp_path / "omakure.yaml")
        assert cfg == config.DEFAULT_CONFIG
        assert cfg is not config.DEFAULT_CONFIG

    def test_deep_merge_with_defaults(self, tmp_path):
        path = tmp_path / "omakure.yaml"
        path.write_text(yaml.dump({"queue": {"stop_on_failure": False}, "extra": {"x": 1}}))
        cfg = config.load_config(path)
        assert cfg["queue"]["stop_on_failure"] is False
        assert cfg["discovery"]["timeout_seconds"] == 10
        assert cfg["extra"] == {"x": 1}

    def test_handles_corrupt_yaml(self, tmp_path):
        path = tmp_path / "omakure.yaml"
        path.write_text("queue: [unclosed")
        assert config.load_config(path) == config.DEFAULT_CONFIG

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "omakure.yaml"
        path.write_text("- just\n- a list\n")
        assert config.load_config(path) == config.DEFAULT_CONFIG

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "omakure.yaml"
        cfg = config.load_config(path)
        cfg["widgets"]["timeout_seconds"] = 5
        config.save_config(path, cfg)
        assert path.read_text().startswith("#")
        assert config.load_config(path)["widgets"]["timeout_seconds"] == 5


class TestSettings:
    def test_get_setting(self):
        cfg = {"a": {"b": {"c": 1}}}
        assert config.get_setting(cfg, "a.b.c") == 1
        assert config.get_setting(cfg, "a.x", "fallback") == "fallback"
        assert config.get_setting(cfg, "a.b.c.d") is None

    def test_get_float_rejects_junk(self):
        assert config.get_float({"widgets": {"timeout_seconds": "abc"}}, "widgets.timeout_seconds") == 2.0
        assert config.get_float({"widgets": {"timeout_seconds": -1}}, "widgets.timeout_seconds") == 2.0
        assert config.get_float({"widgets": {"timeout_seconds": "0.5"}}, "widgets.timeout_seconds") == 0.5

    def test_get_bool(self):
        assert config.get_bool({}, "queue.stop_on_failure") is True
        assert config.get_bool({"queue": {"stop_on_failure": "no"}}, "queue.stop_on_failure") is False
        assert config.get_bool({"discovery": {"dynamic": False}}, "discovery.dynamic") is False


class TestEnvironment:
    def test_update_source_defaults(self):
        assert config.update_source({}) == (config.DEFAULT_REPO, "latest")

    def test_update_source_precedence(self):
        env = {
            "REPO": "generic/repo",
            "CLOUD_MGMT_REPO": "oldest/repo",
            "OVERTURE_REPO": "legacy/repo",
            "OMAKURE_REPO": "primary/repo",
            "VERSION": "v2",
            "OMAKURE_VERSION": "v1.2.0",
        }
        assert config.update_source(env) == ("primary/repo", "v1.2.0")
        del env["OMAKURE_REPO"], env["OMAKURE_VERSION"]
        assert config.update_source(env) == ("legacy/repo", "v2")
        del env["OVERTURE_REPO"]
        assert config.update_source(env)[0] == "oldest/repo"
        del env["CLOUD_MGMT_REPO"]
        assert config.update_source(env)[0] == "generic/repo"
        assert config.update_source({}) == (config.DEFAULT_REPO, "latest")

    def test_legacy_repo_when_primary_unset(self):
        assert config.update_source({"CLOUD_MGMT_REPO": "old/repo"})[0] == "old/repo"

    def test_recognised_env(self):
        env = {"OMAKURE_SCRIPTS_DIR": "/x", "HOME": "/root", "OMAKURE_DEBUG": "1"}
        assert config.recognised_env(env) == {"OMAKURE_SCRIPTS_DIR": "/x", "OMAKURE_DEBUG": "1"}
