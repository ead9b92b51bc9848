import threading
import time

import pytest

from wlscan import scanner
from wlscan.results import EndpointResult
from wlscan.scanner import PROFILES, ScanOrchestrator, ScanState, ThroughputProfile, get_profile

INSTANT = ThroughputProfile("TEST", 0, 4)


class StubStatusProber:
    """Online on the ports given; everything else offline."""

    def __init__(self, online_ports=(), delay=0.0, fail_ports=()):
        self.online_ports = set(online_ports)
        self.fail_ports = set(fail_ports)
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def probe_status(self, address, port):
        with self._lock:
            self.calls.append((address, port))
        if self.delay:
            time.sleep(self.delay)
        if port in self.fail_ports:
            raise RuntimeError("boom")
        if port in self.online_ports:
            return EndpointResult(address, port, online=True, version="1.20.1", players_online=1,
                                  players_max=10, ping_ms=5, protocol=763)
        return EndpointResult.offline(address, port)


class StubWhitelistProbe:
    def __init__(self, whitelisted_ports=()):
        self.whitelisted_ports = set(whitelisted_ports)
        self.calls = []

    def check_whitelist(self, host, port, server_version=None, reported_protocol=-1, cancel_event=None):
        self.calls.append((host, port, server_version, reported_protocol))
        return port in self.whitelisted_ports


def make_scanner(targets="10.0.0.1", count=10, profile=INSTANT, **kwargs):
    kwargs.setdefault("status_prober", StubStatusProber())
    kwargs.setdefault("whitelist_probe", StubWhitelistProbe())
    return ScanOrchestrator(targets, 25565, count, profile, **kwargs)


def test_get_profile_by_name():
    assert get_profile("fast") is PROFILES["FAST"]
    assert get_profile("very-fast") is PROFILES["VERY_FAST"]
    assert get_profile(INSTANT) is INSTANT
    with pytest.raises(ValueError):
        get_profile("ludicrous")


def test_profiles_match_expected_settings():
    assert [(p.delay_ms, p.pool_size) for p in PROFILES.values()] == [(500, 20), (125, 50), (50, 100), (10, 200)]


def test_pool_size_scales_with_addresses_up_to_cap():
    targets = [f"10.0.0.{i}" for i in range(1, 11)]
    assert make_scanner("10.0.0.1", count=1000, profile="MEDIUM").pool_size == 20
    assert make_scanner(targets[:2], count=1000, profile="MEDIUM").pool_size == 40
    assert make_scanner(targets, count=1000, profile="MEDIUM").pool_size == 80
    assert make_scanner("10.0.0.1", count=3, profile="DANGEROUS").pool_size == 3


def test_tasks_are_the_cartesian_product():
    scan = make_scanner(["a", "b", "a"], count=2)
    assert list(scan.tasks()) == [("a", 25565), ("a", 25566), ("b", 25565), ("b", 25566)]
    assert scan.total == 4


@pytest.mark.parametrize("count", [1, 7, 50])
def test_one_progress_callback_per_task(count):
    status = StubStatusProber(online_ports={25565, 25567}, delay=0.001)
    whitelist = StubWhitelistProbe(whitelisted_ports={25567})
    scan = make_scanner(count=count, status_prober=status, whitelist_probe=whitelist)
    seen = []

    results = scan.run(seen.append)

    assert scan.state is ScanState.COMPLETED
    assert len(seen) == count
    assert [p.scanned for p in seen] == list(range(1, count + 1))
    assert seen[-1].percent == 100
    assert all(p.total == count for p in seen)
    online = [p for p in (25565, 25567) if p < 25565 + count]
    assert sorted(r.port for r in results) == online
    assert all(r.online for r in results)
    assert scan.online.value == len(online)
    assert scan.whitelisted.value == (1 if 25567 in online else 0)
    assert seen[-1].online_total == len(online)


def test_whitelist_probe_only_runs_for_online_endpoints():
    status = StubStatusProber(online_ports={25566})
    whitelist = StubWhitelistProbe(whitelisted_ports={25566})
    scan = make_scanner(count=4, status_prober=status, whitelist_probe=whitelist)
    results = scan.run()
    assert whitelist.calls == [("10.0.0.1", 25566, "1.20.1", 763)]
    assert results[0].has_whitelist


def test_keep_offline_in_single_address_mode():
    status = StubStatusProber(online_ports={25565})
    scan = make_scanner(count=3, status_prober=status, keep_offline=True)
    results = scan.run()
    assert len(results) == 3
    assert sum(r.online for r in results) == 1


def test_keep_offline_ignored_for_several_addresses():
    status = StubStatusProber(online_ports={25565})
    scan = make_scanner(["a", "b"], count=3, status_prober=status, keep_offline=True)
    assert len(scan.run()) == 2


def test_failing_task_is_counted_and_does_not_stop_the_run():
    status = StubStatusProber(online_ports={25565}, fail_ports={25566})
    scan = make_scanner(count=3, status_prober=status)
    seen = []
    results = scan.run(seen.append)
    assert scan.state is ScanState.COMPLETED
    assert len(seen) == 3
    assert scan.failed.value == 1
    assert [r.port for r in results] == [25565]


def test_failing_callback_does_not_stop_the_run():
    def explode(progress):
        raise ValueError("renderer broke")

    scan = make_scanner(count=5)
    scan.run(explode)
    assert scan.state is ScanState.COMPLETED
    assert scan.scanned.value == 5


def test_cancel_after_some_callbacks():
    status = StubStatusProber(delay=0.01)
    scan = make_scanner(count=200, status_prober=status, profile=ThroughputProfile("TEST", 0, 2))
    seen = []

    def on_progress(progress):
        seen.append(progress)
        if len(seen) == 5:
            scan.cancel()

    scan.run(on_progress)
    assert scan.state is ScanState.CANCELLED
    assert len(seen) == 5
    assert scan.scanned.value <= 200
    time.sleep(0.1)
    assert len(seen) == 5


def test_cancel_from_another_thread_interrupts_submission_delay():
    scan = make_scanner(count=100, profile=ThroughputProfile("SLOW", 5000, 1))
    seen = []
    timer = threading.Timer(0.2, scan.cancel)
    timer.start()
    started = time.monotonic()
    scan.run(seen.append)
    timer.join()
    assert scan.state is ScanState.CANCELLED
    assert time.monotonic() - started < 3
    assert len(seen) < 100


def test_cancel_before_run():
    scan = make_scanner(count=10)
    scan.cancel()
    seen = []
    assert scan.run(seen.append) == []
    assert scan.state is ScanState.CANCELLED
    assert seen == []


def test_run_twice_is_rejected():
    scan = make_scanner(count=1)
    scan.run()
    with pytest.raises(RuntimeError):
        scan.run()


def test_empty_scan_completes():
    scan = make_scanner(count=0)
    assert scan.run() == []
    assert scan.state is ScanState.COMPLETED


def test_run_scan_helper_returns_results_and_error():
    status = StubStatusProber(online_ports={25565})
    results, error = scanner.run_scan("10.0.0.1", 25565, 2, INSTANT, status_prober=status,
                                      whitelist_probe=StubWhitelistProbe())
    assert error is None
    assert [r.port for r in results] == [25565]


def test_cancel_helper():
    scan = make_scanner(count=1)
    scanner.cancel(scan)
    assert scan.cancelled


def test_run_scan_handle_can_be_cancelled_while_blocking():
    handle = scanner.prepare_scan("10.0.0.1", 25565, 100, ThroughputProfile("SLOW", 5000, 1),
                                  status_prober=StubStatusProber(), whitelist_probe=StubWhitelistProbe())
    timer = threading.Timer(0.2, scanner.cancel, args=(handle,))
    timer.start()
    started = time.monotonic()
    results, error = scanner.run_scan(run=handle)
    timer.join()
    assert error is None
    assert results == []
    assert handle.state is ScanState.CANCELLED
    assert time.monotonic() - started < 3


def test_run_scan_reports_invalid_parameters():
    results, error = scanner.run_scan("10.0.0.1", 65535, 2, INSTANT)
    assert results == []
    assert isinstance(error, ValueError)


@pytest.mark.parametrize("start_port,count", [(0, 1), (65536, 1), (65535, 2), (65000, 1000), (-5, 10)])
def test_port_range_must_stay_within_valid_ports(start_port, count):
    with pytest.raises(ValueError):
        ScanOrchestrator("10.0.0.1", start_port, count, INSTANT,
                         status_prober=StubStatusProber(), whitelist_probe=StubWhitelistProbe())


def test_port_range_may_end_on_last_port():
    scan = ScanOrchestrator("10.0.0.1", 65530, 6, INSTANT,
                            status_prober=StubStatusProber(), whitelist_probe=StubWhitelistProbe())
    assert [port for _, port in scan.tasks()][-1] == 65535
