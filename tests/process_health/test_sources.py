"""
Tests for Metric Sources.

============================================================
PURPOSE
============================================================
Verify PM2 descriptor parsing, CLI failure handling, and the
seeded synthetic source.

============================================================
"""

import json
import os
import stat
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from process_health.aggregator import SystemAggregator
from process_health.clock import MockClock
from process_health.config import MonitorSettings
from process_health.exceptions import SourceUnavailable
from process_health.models import HostContext, ProcessStatus
from process_health.sources import (
    PM2MetricSource,
    SyntheticMetricSource,
    collect_host_context,
    create_metric_source,
    extract_jlist,
    parse_custom_metrics,
    parse_metric_value,
    parse_pm2_process,
)
from process_health.store import InMemoryHealthStore

from conftest import START_MS


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def pm2_descriptor():
    """One entry of `pm2 jlist` output."""
    return {
        "pid": 4242,
        "name": "api-gateway",
        "pm_id": 3,
        "monit": {"memory": 157_286_400, "cpu": 12.5},
        "pm2_env": {
            "status": "online",
            "restart_time": 4,
            "pm_uptime": START_MS - 120_000,
            "axm_monitor": {
                "Loop delay": {"value": "1.23ms", "unit": "ms", "historic": True},
                "Used Heap Size": {"value": "12.5 MB", "unit": "MB", "historic": True},
                "Heap Usage": {"value": 42, "unit": "%", "historic": True},
                "Status": {"value": "N/A", "unit": ""},
            },
        },
    }


@pytest.fixture
def hung_pm2(tmp_path):
    """Executable that records its pid and never answers."""
    pid_file = tmp_path / "pm2.pid"
    script = tmp_path / "pm2"
    script.write_text(f"#!/bin/sh\necho $$ > {pid_file}\nexec sleep 30\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script), pid_file


def assert_reaped(pid_file):
    pid = int(pid_file.read_text().strip())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def fake_process(stdout=b"[]", stderr=b"", returncode=0):
    proc = MagicMock()
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.returncode = returncode
    proc.wait = AsyncMock(return_value=returncode)
    return proc


# ============================================================
# PARSING
# ============================================================

class TestParsing:
    """PM2 descriptor mapping."""

    def test_parse_descriptor(self, pm2_descriptor):
        snapshot = parse_pm2_process(pm2_descriptor)

        assert snapshot.process_id == 3
        assert snapshot.name == "api-gateway"
        assert snapshot.pid == 4242
        assert snapshot.status == ProcessStatus.ONLINE
        assert snapshot.cpu_percent == 12.5
        assert snapshot.memory_bytes == 157_286_400
        assert snapshot.restart_count == 4
        assert snapshot.uptime_seconds(START_MS) == 120

    def test_custom_metrics(self, pm2_descriptor):
        metrics = parse_pm2_process(pm2_descriptor).custom_metrics

        assert set(metrics) == {"Loop delay", "Used Heap Size", "Heap Usage"}
        assert metrics["Loop delay"].value == 1.23
        assert metrics["Loop delay"].unit == "ms"
        assert metrics["Loop delay"].historic is True
        assert metrics["Used Heap Size"].value == 12.5
        assert metrics["Heap Usage"].value == 42.0

    def test_missing_fields_default(self):
        snapshot = parse_pm2_process({"pm_id": 0, "name": "bare"})

        assert snapshot.status == ProcessStatus.UNKNOWN
        assert snapshot.cpu_percent == 0.0
        assert snapshot.memory_bytes == 0
        assert snapshot.started_at_ms is None
        assert snapshot.custom_metrics == {}

    def test_unrecognised_status(self):
        snapshot = parse_pm2_process({"pm_id": 0, "name": "x", "pm2_env": {"status": "one-launch-status"}})
        assert snapshot.status == ProcessStatus.UNKNOWN

    @pytest.mark.parametrize("raw,expected", [
        (3, 3.0),
        (2.5, 2.5),
        ("0.75ms", 0.75),
        ("-4 %", -4.0),
        ("N/A", None),
        (True, None),
        (None, None),
    ])
    def test_parse_metric_value(self, raw, expected):
        assert parse_metric_value(raw) == expected

    def test_extract_jlist_after_banner(self):
        output = "[PM2] Spawning PM2 daemon\n[PM2] PM2 Successfully daemonized\n[{\"pm_id\": 1}]\n"
        assert extract_jlist(output) == [{"pm_id": 1}]

    def test_extract_jlist_without_array(self):
        with pytest.raises(SourceUnavailable):
            extract_jlist("[PM2] Spawning PM2 daemon\n")

    def test_bare_metric_values(self):
        metrics = parse_custom_metrics({"Active handles": "17", "Broken": {"value": []}})
        assert list(metrics) == ["Active handles"]
        assert metrics["Active handles"].unit == ""


# ============================================================
# PM2 CLI
# ============================================================

class TestPM2Source:
    """`pm2 jlist` execution and failure handling."""

    @pytest.mark.asyncio
    async def test_list_processes_skips_banner(self, pm2_descriptor):
        source = PM2MetricSource()
        output = "[PM2] Spawning PM2 daemon\n" + json.dumps([pm2_descriptor])
        with patch.object(source, "_run_jlist", AsyncMock(return_value=output)):
            processes = await source.list_processes()

        assert [p.name for p in processes] == ["api-gateway"]

    @pytest.mark.asyncio
    async def test_empty_list_is_not_an_error(self):
        source = PM2MetricSource()
        with patch.object(source, "_run_jlist", AsyncMock(return_value="[]")):
            assert await source.list_processes() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("output", ["", "not json", "[{broken"])
    async def test_unparsable_output(self, output):
        source = PM2MetricSource()
        with patch.object(source, "_run_jlist", AsyncMock(return_value=output)):
            with pytest.raises(SourceUnavailable):
                await source.list_processes()

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        source = PM2MetricSource()
        with patch.object(source, "candidate_binaries", return_value=[]):
            with pytest.raises(SourceUnavailable) as exc_info:
                await source.list_processes()
        assert "not found" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_runs_jlist(self):
        source = PM2MetricSource(pm2_bin="/opt/pm2")
        exec_mock = AsyncMock(return_value=fake_process(stdout=b"[]"))
        with patch.object(source, "candidate_binaries", return_value=["/opt/pm2"]), \
                patch("asyncio.create_subprocess_exec", exec_mock):
            assert await source.list_processes() == []

        assert exec_mock.call_args.args[:2] == ("/opt/pm2", "jlist")

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        source = PM2MetricSource()
        proc = fake_process(stdout=b"", stderr=b"daemon not running", returncode=1)
        with patch.object(source, "candidate_binaries", return_value=["/opt/pm2"]), \
                patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(SourceUnavailable) as exc_info:
                await source.list_processes()
        assert "daemon not running" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_falls_through_unexecutable_binary(self):
        source = PM2MetricSource()
        exec_mock = AsyncMock(side_effect=[PermissionError("denied"), fake_process(stdout=b"[]")])
        with patch.object(source, "candidate_binaries", return_value=["/bad/pm2", "/good/pm2"]), \
                patch("asyncio.create_subprocess_exec", exec_mock):
            assert await source.list_processes() == []
        assert exec_mock.call_count == 2

    def test_configured_binary_comes_first(self, tmp_path):
        pm2 = tmp_path / "pm2"
        pm2.write_text("#!/bin/sh\necho '[]'\n")
        pm2.chmod(pm2.stat().st_mode | stat.S_IXUSR)

        source = PM2MetricSource(pm2_bin=str(pm2))

        assert source.candidate_binaries()[0] == str(pm2)

    def test_missing_configured_binary_is_skipped(self, tmp_path):
        source = PM2MetricSource(pm2_bin=os.path.join(str(tmp_path), "nope"))
        assert str(tmp_path) not in " ".join(source.candidate_binaries())

    @pytest.mark.asyncio
    async def test_host_stats(self):
        host = await PM2MetricSource().host_stats()
        assert isinstance(host, HostContext)
        assert host.total_mem and host.total_mem > 0


unix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell script")


@unix_only
class TestHungPM2:
    """A pm2 that never answers is killed and reaped."""

    @pytest.mark.asyncio
    async def test_command_timeout_kills_child(self, hung_pm2):
        script, pid_file = hung_pm2
        source = PM2MetricSource(pm2_bin=script, command_timeout=0.5)

        with pytest.raises(SourceUnavailable) as exc_info:
            await source.list_processes()

        assert "timed out" in exc_info.value.reason
        assert_reaped(pid_file)

    @pytest.mark.asyncio
    async def test_abandoned_poll_kills_child(self, hung_pm2):
        script, pid_file = hung_pm2
        source = PM2MetricSource(pm2_bin=script, command_timeout=30.0)
        aggregator = SystemAggregator(InMemoryHealthStore(retention_cap=10), source, source_timeout=0.5)

        with pytest.raises(SourceUnavailable):
            await aggregator.poll()

        assert_reaped(pid_file)


# ============================================================
# HOST / SYNTHETIC / FACTORY
# ============================================================

class TestHostContext:
    """psutil host statistics."""

    def test_collect_host_context(self):
        host = collect_host_context()
        assert host.total_mem > 0
        assert host.free_mem is not None
        assert host.hostname


class TestSyntheticSource:
    """Seeded demo data."""

    @pytest.mark.asyncio
    async def test_same_seed_same_processes(self):
        clock = MockClock(START_MS)
        first = await SyntheticMetricSource(seed=7, clock=clock).list_processes()
        second = await SyntheticMetricSource(seed=7, clock=clock).list_processes()

        assert [(p.name, p.status) for p in first] == [(p.name, p.status) for p in second]
        assert first == second

    @pytest.mark.asyncio
    async def test_first_five_online(self):
        processes = await SyntheticMetricSource(seed=1).list_processes()

        assert len(processes) == 8
        assert all(p.status == ProcessStatus.ONLINE for p in processes[:5])
        assert processes[0].name == "web-server-0"
        assert processes[1].name == "api-gateway-1"

    @pytest.mark.asyncio
    async def test_snapshot_includes_host(self):
        source = SyntheticMetricSource()
        snapshot = await source.snapshot()
        assert snapshot.host.load_avg is not None
        assert source.data_source == "simulated"


class TestFactory:
    """Source selection."""

    def test_demo_mode_selects_synthetic(self):
        source = create_metric_source(MonitorSettings(demo_mode=True))
        assert isinstance(source, SyntheticMetricSource)

    def test_default_selects_pm2(self):
        source = create_metric_source(MonitorSettings(pm2_bin="/opt/pm2"))
        assert isinstance(source, PM2MetricSource)
        assert source.data_source == "real"

    def test_command_timeout_follows_source_timeout(self):
        source = create_metric_source(MonitorSettings(pm2_bin="/opt/pm2", source_timeout_seconds=2.5))
        assert source._command_timeout == 2.5
