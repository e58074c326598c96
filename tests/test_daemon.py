"""Tests for the daemon command line."""

from __future__ import annotations

import pytest

from procwatt.config import MonitorConfig
from procwatt.config.parsing import apply_overrides
from procwatt.cost_model import CostModelConfig
from procwatt.daemon import build_parser, build_sink, cli_overrides, main
from procwatt.host import HostInfo
from procwatt.sinks.prometheus import PrometheusSink, PushGatewaySink


def _host() -> HostInfo:
    return HostInfo(
        hostname="node-1",
        os="Linux",
        os_version="#1 SMP",
        kernel_version="6.8.0",
        cpu_model="x86_64",
        total_power_draw=35.0,
        per_core_power=8.75,
        core_count=4,
        attribution_mode="proportional-to-cpu-time",
    )


def test_unset_flags_leave_configuration_untouched() -> None:
    config = MonitorConfig(cost_model=CostModelConfig(core_count=4))

    overrides = cli_overrides(build_parser().parse_args([]))

    assert not (overrides.sampler or overrides.cost or overrides.labels)
    assert apply_overrides(config, overrides) == config


def test_flags_override_configuration() -> None:
    args = build_parser().parse_args(
        [
            "-m",
            "0.0.0.0:9200",
            "-c",
            "500",
            "-a",
            "95",
            "--core-count",
            "16",
            "--attribution-mode",
            "proportional-to-cpu-time-per-core",
            "--max-series",
            "50",
            "--collision-strategy",
            "aggregate-by-name",
            "--no-include-pid",
            "--include-cmdline",
            "--source",
            "procfs",
            "--pushgateway",
            "gateway.local:9091",
        ]
    )

    config = apply_overrides(MonitorConfig(), cli_overrides(args))

    assert config.metrics_address == "0.0.0.0:9200"
    assert config.poll_interval == pytest.approx(0.5)
    assert config.source == "procfs"
    assert config.pushgateway == "gateway.local:9091"
    assert config.cost_model.total_power_draw == 95.0
    assert config.cost_model.core_count == 16
    assert config.cost_model.attribution_mode == "proportional-to-cpu-time-per-core"
    assert config.label_policy.max_distinct_series == 50
    assert config.label_policy.name_collision_strategy == "aggregate-by-name"
    assert config.label_policy.include_pid is False
    assert config.label_policy.include_cmdline is True


def test_out_of_range_flag_is_rejected() -> None:
    args = build_parser().parse_args(["-c", "0"])

    with pytest.raises(ValueError):
        apply_overrides(MonitorConfig(), cli_overrides(args))


def test_pid_flags_are_mutually_exclusive() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--include-pid", "--no-include-pid"])


def test_pushgateway_selects_push_sink() -> None:
    config = MonitorConfig(pushgateway="gateway.local:9091", tick_timeout=2.0)

    sink = build_sink(config, _host())

    assert isinstance(sink, PushGatewaySink)
    assert sink.gateway == "gateway.local:9091"
    assert sink.timeout == 2.0
    assert sink.collector.host == _host()


def test_scrape_sink_is_served_without_pushgateway() -> None:
    sink = build_sink(MonitorConfig(metrics_address="127.0.0.1:0"), _host())
    try:
        assert isinstance(sink, PrometheusSink)
    finally:
        sink.close()


def test_main_reports_invalid_configuration() -> None:
    assert main(["--config", "/nonexistent/procwatt.yml"]) == 1
