import logging

import pytest

from helpers import FakeRunner
from ptroute.config import TraceSettings
from ptroute.errors import CollectorFailed, CollectorUnavailable
from ptroute.trace import (
    SystemTracerouteRunner,
    is_ip_token,
    load_targets,
    parse_hop_line,
    parse_traceroute_n,
    run_traces,
    trace_target,
)

LINUX_OUTPUT = """\
traceroute to one.one.one.one (1.1.1.1), 30 hops max, 60 byte packets
 1  192.168.1.1  0.512 ms  0.433 ms  0.401 ms
 2  * * *
 3  10.20.0.1  8.101 ms *  8.342 ms
 4  172.16.4.4  9.7 ms !H  10.2 ms  9.9 ms
 5  1.1.1.1  11.002 ms  10.871 ms  10.990 ms
"""

BSD_OUTPUT = """\
traceroute to 8.8.8.8 (8.8.8.8), 64 hops max, 52 byte packets
 1  10.0.0.1  1.2ms  1.4ms  1.3ms
 2  fe80::1  2.0 ms  2001:db8::2  2.5 ms  2.2 ms
"""


class TestParser:
    def test_target_taken_from_parenthesised_address(self):
        target, hops = parse_traceroute_n(LINUX_OUTPUT)
        assert target == "1.1.1.1"
        assert [hop.ttl for hop in hops] == [1, 2, 3, 4, 5]

    def test_responding_hop(self):
        _, hops = parse_traceroute_n(LINUX_OUTPUT)
        assert hops[0].address == "192.168.1.1"
        assert hops[0].rtt_ms == [0.512, 0.433, 0.401]

    def test_silent_hop_has_no_address_or_rtts(self):
        _, hops = parse_traceroute_n(LINUX_OUTPUT)
        assert hops[1].address is None
        assert hops[1].rtt_ms == [None, None, None]

    def test_partial_loss_recorded_as_absent_rtt(self):
        _, hops = parse_traceroute_n(LINUX_OUTPUT)
        assert hops[2].rtt_ms == [8.101, None, 8.342]
        assert hops[2].loss_count == 1

    def test_annotations_ignored(self):
        _, hops = parse_traceroute_n(LINUX_OUTPUT)
        assert hops[3].address == "172.16.4.4"
        assert hops[3].rtt_ms == [9.7, 10.2, 9.9]

    def test_inline_ms_and_ipv6_first_address_wins(self):
        target, hops = parse_traceroute_n(BSD_OUTPUT)
        assert target == "8.8.8.8"
        assert hops[0].rtt_ms == [1.2, 1.4, 1.3]
        assert hops[1].address == "fe80::1"
        assert hops[1].rtt_ms == [2.0, 2.5, 2.2]

    def test_target_without_parentheses(self):
        target, _ = parse_traceroute_n("traceroute to example.net, 30 hops max\n")
        assert target == "example.net"

    def test_missing_header_rejected(self):
        with pytest.raises(ValueError, match="missing target"):
            parse_traceroute_n(" 1  10.0.0.1  1.0 ms\n")

    def test_bad_hop_line_rejected(self):
        with pytest.raises(ValueError, match="invalid hop line"):
            parse_hop_line("1x 10.0.0.1 1.0 ms")

    @pytest.mark.parametrize(
        "token, expected",
        [("10.0.0.1", True), ("256.1.1.1", False), ("1.2.3", False), ("2001:db8::1", True), ("12ms", False)],
    )
    def test_ip_tokens(self, token, expected):
        assert is_ip_token(token) is expected


class TestRunTraces:
    def test_results_follow_input_order_not_completion_order(self):
        runner = FakeRunner(delays={"a": 0.2, "b": 0.0, "c": 0.1})
        runs = run_traces(["a", "b", "c"], TraceSettings(concurrency=3), runner)
        assert [run.target for run in runs] == ["a", "b", "c"]
        assert sorted(runner.calls) == ["a", "b", "c"]

    def test_repeats_grouped_per_target(self):
        runner = FakeRunner(delays={"a": 0.05})
        runs = run_traces(["a", "b"], TraceSettings(concurrency=2, repeat=2), runner)
        assert [run.target for run in runs] == ["a", "a", "b", "b"]

    def test_runs_carry_parsed_hops(self, runner):
        (run,) = run_traces(["1.1.1.1"], TraceSettings(), runner)
        assert [hop.address for hop in run.hops] == [None, "10.0.0.1", "1.1.1.1"]
        assert run.timestamp_utc.endswith("Z")

    def test_failed_target_is_skipped(self, caplog):
        runner = FakeRunner(failures=["bad"])
        with caplog.at_level(logging.WARNING, logger="ptroute.trace"):
            runs = run_traces(["good", "bad", "other"], TraceSettings(concurrency=2), runner)
        assert [run.target for run in runs] == ["good", "other"]
        assert "bad" in caplog.text

    def test_unavailable_collector_is_fatal(self):
        with pytest.raises(CollectorUnavailable):
            run_traces(["a"], TraceSettings(), FakeRunner(unavailable=True))

    def test_unparseable_output_is_a_collector_failure(self):
        runner = FakeRunner(outputs={"a": "no traceroute here\n"})
        with pytest.raises(CollectorFailed, match="missing target"):
            trace_target("a", TraceSettings(), runner)

    def test_interval_between_repeats(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr("ptroute.trace.time.sleep", sleeps.append)
        trace_target("a", TraceSettings(repeat=3, interval_ms=250), FakeRunner())
        assert sleeps == [0.25, 0.25]


class TestSystemRunner:
    def test_command_flags(self):
        settings = TraceSettings(max_hops=12, probes=2, timeout_ms=1500)
        command = SystemTracerouteRunner().command("9.9.9.9", settings)
        assert command == ["traceroute", "-n", "-q", "2", "-m", "12", "-w", "2", "9.9.9.9"]

    def test_missing_executable(self):
        runner = SystemTracerouteRunner("ptroute-no-such-traceroute")
        with pytest.raises(CollectorUnavailable):
            runner.run("1.1.1.1", TraceSettings())


class TestLoadTargets:
    def test_comments_and_blank_lines_ignored(self, tmp_path):
        path = tmp_path / "targets.txt"
        path.write_text("# edge routers\n1.1.1.1\n\n  8.8.8.8  \n#9.9.9.9\n")
        assert load_targets(path, ["example.net"]) == ["1.1.1.1", "8.8.8.8", "example.net"]

    def test_explicit_targets_only(self):
        assert load_targets(None, ["a", " ", "b"]) == ["a", "b"]
