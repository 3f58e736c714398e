"""
Tests for configuration loading
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from ci_orchestrator.config import load_pipelines, parse_job, parse_pipelines
from ci_orchestrator.exceptions import ConfigurationError
from ci_orchestrator.main import Event, EventKind, OrchestratorConfig, ReleasePolicy
from ci_orchestrator.matrix import expand_all
from ci_orchestrator.orchestrator import PipelineOrchestrator

CONFIG_YAML = """
name: test-ci
max_concurrent_jobs: 2
policy:
  floor_version: "0.0.1"
  allow_minor_breaking_pre_stable: false
  markers:
    major: "BREAKING"

pipelines:
  - name: ci
    triggers:
      pull_request:
      push:
        branches: [main]
      schedule:
        - "0 18 * * 1,4,6"
    jobs:
      tests:
        name: Unit tests
        matrix:
          os: [windows-latest, macos-latest, ubuntu-latest]
          rust_version: [stable, 1.74.0]
        run: cargo +${{ matrix.rust_version }} test
      cargo-deny:
        matrix:
          checks: [advisories, bans licenses sources]
        tolerant_when:
          checks: [advisories]
        run: cargo deny check ${{ matrix.checks }}
      wasm:
        run: wasm-pack test --chrome --headless
        working_directory: sdk
        timeout_ms: 600000
    release:
      api_check:
        run: ./api-diff.sh
"""


class TestLoadPipelines:
    """Tests for YAML pipeline loading"""

    @pytest.fixture
    def config_file(self, tmp_path) -> Path:
        path = tmp_path / "ci-orchestrator.yml"
        path.write_text(CONFIG_YAML)
        return path

    def test_loads_pipeline(self, config_file):
        pipelines = load_pipelines(config_file)

        assert len(pipelines) == 1
        ci = pipelines[0]
        assert ci.name == "ci"
        assert [job.name for job in ci.jobs] == ["tests", "cargo-deny", "wasm"]
        assert ci.release is not None
        assert ci.release.api_check.command == "./api-diff.sh"

    def test_matrix_order_and_values(self, config_file):
        tests = load_pipelines(config_file)[0].get_job("tests")

        assert tests.axis_names == ["os", "rust_version"]
        assert tests.axes[1][1] == ("stable", "1.74.0")
        assert tests.display_name == "Unit tests"

    def test_expansion_count(self, config_file):
        instances = expand_all(list(load_pipelines(config_file)[0].jobs))
        # 6 test combinations + 2 audit checks + 1 wasm job
        assert len(instances) == 9

    def test_tolerance_predicate(self, config_file):
        deny = load_pipelines(config_file)[0].get_job("cargo-deny")
        assert deny.tolerant_when == {"checks": ("advisories",)}

    def test_triggers(self, config_file):
        ci = load_pipelines(config_file)[0]

        assert ci.triggers.matches(Event(EventKind.PULL_REQUEST, ref="x", base_ref="dev"))
        assert ci.triggers.matches(Event(EventKind.PUSH, ref="refs/heads/main"))
        assert not ci.triggers.matches(Event(EventKind.PUSH, ref="refs/heads/dev"))

    def test_job_options(self, config_file):
        wasm = load_pipelines(config_file)[0].get_job("wasm")

        assert wasm.working_directory == "sdk"
        assert wasm.timeout_ms == 600000
        assert wasm.tool == "command"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("pipelines: [unclosed")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_pipelines(path)


class TestParseErrors:
    """Structural problems surface as ConfigurationError"""

    def test_unknown_job_key(self):
        with pytest.raises(ConfigurationError, match="unknown key"):
            parse_job("tests", {"run": "x", "runs-on": "ubuntu"})

    def test_empty_axis(self):
        with pytest.raises(ConfigurationError):
            parse_job("tests", {"run": "x", "matrix": {"os": []}})

    def test_matrix_list_form(self):
        template = parse_job("tests", {"run": "x", "matrix": [{"os": ["a", "b"]}, {"v": [1]}]})
        assert template.axis_names == ["os", "v"]

    def test_tolerant_must_be_bool(self):
        with pytest.raises(ConfigurationError):
            parse_job("tests", {"run": "x", "tolerant": "yes please"})

    def test_bad_timeout(self):
        with pytest.raises(ConfigurationError):
            parse_job("tests", {"run": "x", "timeout_ms": -1})

    def test_duplicate_pipeline_names(self):
        with pytest.raises(ConfigurationError, match="Duplicate"):
            parse_pipelines({"pipelines": [{"name": "ci"}, {"name": "ci"}]})

    def test_pipeline_needs_name(self):
        with pytest.raises(ConfigurationError):
            parse_pipelines({"pipelines": [{"jobs": {}}]})

    def test_api_check_cannot_have_matrix(self):
        with pytest.raises(ConfigurationError, match="api_check"):
            parse_pipelines({"pipelines": [{
                "name": "ci",
                "release": {"api_check": {"run": "x ${{ matrix.a }}", "matrix": {"a": [1, 2]}}},
            }]})

    def test_single_branch_string(self):
        pipeline = parse_pipelines({"pipelines": [{
            "name": "ci",
            "triggers": {"push": {"branches": "main"}},
        }]})[0]

        assert pipeline.triggers.push.branches == ("main",)
        assert pipeline.triggers.matches(Event(EventKind.PUSH, ref="refs/heads/main"))
        assert not pipeline.triggers.matches(Event(EventKind.PUSH, ref="refs/heads/dev"))

    def test_branches_must_be_names(self):
        with pytest.raises(ConfigurationError):
            parse_pipelines({"pipelines": [{
                "name": "ci",
                "triggers": {"push": {"branches": {"main": True}}},
            }]})

    def test_release_true(self):
        pipeline = parse_pipelines({"pipelines": [{"name": "ci", "release": True}]})[0]
        assert pipeline.release is not None
        assert pipeline.release.api_check is None

    def test_no_release(self):
        pipeline = parse_pipelines({"pipelines": [{"name": "ci"}]})[0]
        assert pipeline.release is None


class TestOrchestratorConfig:
    """Tests for OrchestratorConfig"""

    def test_default_config(self):
        config = OrchestratorConfig()
        assert config.max_concurrent_jobs == 8
        assert config.policy == ReleasePolicy()
        assert config.policy.floor_version == "0.1.0"
        assert config.policy.allow_minor_breaking_pre_stable is True

    def test_from_yaml_ignores_pipelines(self, tmp_path):
        path = tmp_path / "ci-orchestrator.yml"
        path.write_text(CONFIG_YAML)
        config = OrchestratorConfig.from_yaml(str(path))

        assert config.name == "test-ci"
        assert config.max_concurrent_jobs == 2
        assert config.policy.floor_version == "0.0.1"
        assert config.policy.allow_minor_breaking_pre_stable is False
        assert config.policy.markers.major == "BREAKING"
        assert config.policy.markers.minor == "(MINOR)"

    def test_config_from_env(self):
        """Should load config from environment"""
        with patch.dict("os.environ", {
            "CI_MAX_CONCURRENT_JOBS": "3",
            "CI_FLOOR_VERSION": "1.0.0",
            "CI_ALLOW_MINOR_BREAKING_PRE_STABLE": "false",
            "CI_ENABLE_EVENTS": "true",
            "CI_EVENTS_URL": "http://events.local",
        }):
            config = OrchestratorConfig.from_env()

            assert config.max_concurrent_jobs == 3
            assert config.policy.floor_version == "1.0.0"
            assert config.policy.allow_minor_breaking_pre_stable is False
            assert config.enable_events is True
            assert config.events_url == "http://events.local"

    @pytest.mark.parametrize("env", [
        {"CI_FLOOR_VERSION": "1.0"},
        {"CI_MAX_CONCURRENT_JOBS": "many"},
        {"CI_MAX_CONCURRENT_JOBS": "0"},
        {"CI_ENABLE_EVENTS": "maybe"},
    ])
    def test_invalid_env(self, env):
        with patch.dict("os.environ", env):
            with pytest.raises(ConfigurationError):
                OrchestratorConfig.from_env()


class TestPolicyValidation:
    """A malformed policy section is rejected when the config loads"""

    def load(self, tmp_path, text):
        path = tmp_path / "ci-orchestrator.yml"
        path.write_text(text)
        return OrchestratorConfig.from_yaml(str(path))

    def test_unknown_policy_key(self, tmp_path):
        with pytest.raises(ConfigurationError, match="floor"):
            self.load(tmp_path, "policy:\n  floor: 0.1.0\n")

    def test_unknown_marker_key(self, tmp_path):
        with pytest.raises(ConfigurationError, match="breaking"):
            self.load(tmp_path, "policy:\n  markers:\n    breaking: '!'\n")

    def test_float_floor_version(self, tmp_path):
        """An unquoted 1.0 is read as a float and is not MAJOR.MINOR.PATCH"""
        with pytest.raises(ConfigurationError, match="floor_version"):
            self.load(tmp_path, "policy:\n  floor_version: 1.0\n")

    def test_malformed_floor_version(self, tmp_path):
        with pytest.raises(ConfigurationError, match="floor_version"):
            self.load(tmp_path, "policy:\n  floor_version: '1.0'\n")

    def test_non_bool_pre_stable_flag(self, tmp_path):
        with pytest.raises(ConfigurationError):
            self.load(tmp_path, "policy:\n  allow_minor_breaking_pre_stable: 'no'\n")

    def test_empty_marker(self, tmp_path):
        with pytest.raises(ConfigurationError):
            self.load(tmp_path, "policy:\n  markers:\n    major: ''\n")

    def test_policy_must_be_mapping(self, tmp_path):
        with pytest.raises(ConfigurationError):
            self.load(tmp_path, "policy: strict\n")

    def test_invalid_concurrency(self, tmp_path):
        with pytest.raises(ConfigurationError):
            self.load(tmp_path, "max_concurrent_jobs: 0\n")

    def test_orchestrator_rejects_bad_policy_before_running(self):
        config = OrchestratorConfig(policy=ReleasePolicy(floor_version="1.0"))
        with pytest.raises(ConfigurationError):
            PipelineOrchestrator(config=config)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
