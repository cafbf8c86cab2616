import json

import pytest

from capprobe.core.config import (
    CONFIG,
    ConfigError,
    ProbeOptions,
    _apply_env_overrides,
    load_config,
    load_connection_overrides,
    load_options,
    validate_config,
)


def test_default_config_is_valid():
    validate_config(dict(CONFIG))


def test_missing_key_is_rejected():
    cfg = dict(CONFIG)
    del cfg["CONTROL_PORT"]
    with pytest.raises(ConfigError, match="CONTROL_PORT"):
        validate_config(cfg)


def test_bad_port_is_rejected():
    with pytest.raises(ConfigError):
        load_config({"TELEMETRY_PORT": 70000}, environ={})


def test_unknown_override_key_is_rejected():
    with pytest.raises(ConfigError):
        load_config({"NOT_A_KEY": 1}, environ={})


def test_env_overrides_are_typed():
    cfg = _apply_env_overrides(
        dict(CONFIG),
        {"CAPPROBE_CONTROL_PORT": "50000", "CAPPROBE_HEADLESS": "no", "CAPPROBE_SSH_HOST": "10.0.0.5"},
    )
    assert cfg["CONTROL_PORT"] == 50000
    assert cfg["HEADLESS"] is False
    assert cfg["SSH_HOST"] == "10.0.0.5"


def test_env_override_with_bad_value():
    with pytest.raises(ConfigError):
        _apply_env_overrides(dict(CONFIG), {"CAPPROBE_CONTROL_PORT": "many"})


def test_host_telemetry_mode_is_checked():
    with pytest.raises(ConfigError):
        load_config({"HOST_TELEMETRY": "wmi"}, environ={})


class TestProbeOptions:

    def test_defaults(self):
        opts = ProbeOptions()
        assert opts.fps_len == 10
        assert opts.cpu_threshold == 80.0
        assert opts.growth_discount == pytest.approx(0.618)
        assert opts.stat_timeout_s == pytest.approx(5 * opts.stat_interval_s)
        assert opts.drop_ratio == pytest.approx(0.8)
        assert opts.baseline_timeout_s == 60.0
        assert not opts.confirm_driven

    @pytest.mark.parametrize(
        "field,value",
        [
            ("fps_len", 0),
            ("cpu_threshold", 120.0),
            ("drop", 1.0),
            ("sane_fps_ratio", 0.0),
            ("calm_timeout_s", -1.0),
            ("baseline_timeout_s", 0.0),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ConfigError):
            ProbeOptions(**{field: value})

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigError, match="bogus"):
            ProbeOptions.from_mapping({"bogus": 1})

    def test_round_trip_through_dict(self):
        opts = ProbeOptions(fps_len=6)
        assert ProbeOptions.from_mapping(opts.to_dict()) == opts

    def test_load_options_from_probe_section(self, tmp_path):
        path = tmp_path / "probe.json"
        path.write_text(
            json.dumps({"probe": {"fps_len": 6, "cpu_threshold": 70}, "connection": {"CONTROL_PORT": 1234}}),
            encoding="utf-8",
        )
        opts = load_options(path, confirm_driven=True, cpu_len=None)
        assert opts.fps_len == 6
        assert opts.cpu_threshold == 70
        assert opts.cpu_len == 5
        assert opts.confirm_driven
        assert load_connection_overrides(path) == {"CONTROL_PORT": 1234}

    def test_load_options_flat_file(self, tmp_path):
        path = tmp_path / "flat.json"
        path.write_text(json.dumps({"validate_count": 5, "connection": {}}), encoding="utf-8")
        assert load_options(path).validate_count == 5

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_options(tmp_path / "missing.json")
        assert load_connection_overrides(None) == {}
