import enum
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace

from . import config
from .results import EndpointResult, ScanProgress
from .status import StatusProber
from .whitelist_probe import WhitelistProbe

logger = logging.getLogger(__name__)

MAX_PORT = 65535


@dataclass(frozen=True)
class ThroughputProfile:
    name: str
    delay_ms: int
    pool_size: int

    def __str__(self):
        return self.name


PROFILES = {
    "MEDIUM": ThroughputProfile("MEDIUM", 500, 20),
    "FAST": ThroughputProfile("FAST", 125, 50),
    "VERY_FAST": ThroughputProfile("VERY_FAST", 50, 100),
    "DANGEROUS": ThroughputProfile("DANGEROUS", 10, 200),
}


def get_profile(profile):
    """Accept a ThroughputProfile or a profile name (case-insensitive)."""
    if isinstance(profile, ThroughputProfile):
        return profile
    key = str(profile).strip().upper().replace("-", "_")
    if key not in PROFILES:
        raise ValueError(f"Unknown throughput profile: {profile!r} (choose from {', '.join(PROFILES)})")
    return PROFILES[key]


class ScanState(enum.Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AtomicCounter:
    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    def increment(self):
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self):
        return self._value


class ScanOrchestrator:
    """
    Fans (address, port) probes out over a fixed worker pool.

    Every finished task produces exactly one ScanProgress through the
    callback, unless the run was cancelled first. Results are kept for online
    endpoints (and offline ones too in single-address mode with keep_offline).
    """

    def __init__(self, targets, start_port, count, profile=config.DEFAULT_PROFILE,
                 status_prober=None, whitelist_probe=None, keep_offline=False):
        if isinstance(targets, str):
            targets = [targets]
        # Distinct addresses, first occurrence order
        self.targets = list(dict.fromkeys(targets))
        self.start_port = int(start_port)
        self.count = max(0, int(count))
        if not 0 < self.start_port <= MAX_PORT or self.start_port + self.count - 1 > MAX_PORT:
            raise ValueError(
                f"Port range {self.start_port}-{self.start_port + self.count - 1} is outside 1-{MAX_PORT}")
        self.profile = get_profile(profile)
        self.status_prober = status_prober or StatusProber()
        self.whitelist_probe = whitelist_probe or WhitelistProbe()
        self.keep_offline = keep_offline and len(self.targets) == 1

        self.results = []
        self._results_lock = threading.Lock()
        self._emit_lock = threading.RLock()
        self._cancel_event = threading.Event()
        self._executor = None
        self.state = ScanState.CREATED
        self.scanned = AtomicCounter()
        self.online = AtomicCounter()
        self.whitelisted = AtomicCounter()
        self.failed = AtomicCounter()

    @property
    def total(self):
        return len(self.targets) * self.count

    @property
    def pool_size(self):
        size = self.profile.pool_size * min(max(len(self.targets), 1), config.MAX_ADDRESS_MULTIPLIER)
        return max(1, min(size, self.total))

    @property
    def cancelled(self):
        return self._cancel_event.is_set()

    def tasks(self):
        for address in self.targets:
            for port in range(self.start_port, self.start_port + self.count):
                yield address, port

    def cancel(self):
        """Stop dispatching, drop queued work and silence further callbacks."""
        self._cancel_event.set()
        executor = self._executor
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        # Wait for any callback already in progress to finish
        with self._emit_lock:
            pass

    def run(self, on_progress=None):
        if self.state is not ScanState.CREATED:
            raise RuntimeError(f"Scan already {self.state.value}")
        self.state = ScanState.RUNNING
        total = self.total
        started = time.monotonic()
        logger.info(
            f"Scanning {len(self.targets)} address(es), ports {self.start_port}-"
            f"{self.start_port + self.count - 1}, profile {self.profile.name}, pool {self.pool_size}")

        futures = set()
        self._executor = ThreadPoolExecutor(max_workers=self.pool_size, thread_name_prefix="wlscan")
        try:
            delay = self.profile.delay_ms / 1000.0
            for index, (address, port) in enumerate(self.tasks(), start=1):
                if self.cancelled:
                    break
                try:
                    futures.add(self._executor.submit(self._scan_one, address, port, total, on_progress))
                except RuntimeError:
                    # Executor shut down by cancel()
                    break
                if delay and index % self.pool_size == 0 and index < total:
                    self._cancel_event.wait(delay)

            pending = futures
            while pending and not self.cancelled:
                _, pending = wait(pending, timeout=config.WAIT_POLL_SECONDS, return_when=FIRST_COMPLETED)
            if self.cancelled and pending:
                wait(pending, timeout=config.CANCEL_GRACE_SECONDS)
        finally:
            self._executor.shutdown(wait=False, cancel_futures=True)

        self.state = ScanState.CANCELLED if self.cancelled else ScanState.COMPLETED
        logger.info(
            f"Scan {self.state.value} in {time.monotonic() - started:.1f}s: "
            f"{self.scanned.value}/{total} scanned, {self.online.value} online, "
            f"{self.whitelisted.value} whitelisted, {self.failed.value} failed")
        return self.snapshot()

    def snapshot(self):
        with self._results_lock:
            return list(self.results)

    def _probe(self, address, port):
        info = self.status_prober.probe_status(address, port)
        if self.cancelled or not info.online:
            return info
        has_whitelist = self.whitelist_probe.check_whitelist(
            address, port,
            server_version=info.version,
            reported_protocol=info.protocol,
            cancel_event=self._cancel_event,
        )
        return replace(info, has_whitelist=has_whitelist) if has_whitelist else info

    def _scan_one(self, address, port, total, on_progress):
        if self.cancelled:
            return
        try:
            info = self._probe(address, port)
        except Exception as e:
            logger.error(f"Error: {address}:{port} - {e}", exc_info=logger.isEnabledFor(logging.DEBUG))
            self.failed.increment()
            info = EndpointResult.offline(address, port)
        if self.cancelled:
            return

        if info.online:
            self.online.increment()
            if info.has_whitelist:
                self.whitelisted.increment()
        if info.online or self.keep_offline:
            with self._results_lock:
                self.results.append(info)

        with self._emit_lock:
            if self.cancelled:
                return
            progress = ScanProgress(
                self.scanned.increment(), total, info, self.online.value, self.whitelisted.value)
            if on_progress is not None:
                try:
                    on_progress(progress)
                except Exception as e:
                    logger.error(f"Progress callback failed: {e}")


def prepare_scan(targets, start_port, count, profile=config.DEFAULT_PROFILE, **kwargs):
    """Build a scan handle without starting it; drive it with run_scan(run=...)."""
    return ScanOrchestrator(targets, start_port, count, profile, **kwargs)


def run_scan(targets=None, start_port=None, count=None, profile=config.DEFAULT_PROFILE,
             on_progress=None, run=None, **kwargs):
    """
    Run a scan to completion; returns (results, error).

    A handle from prepare_scan() passed as ``run`` stays reachable, so another
    thread can cancel() it while this call blocks. Without one the scan is
    built from the remaining arguments.
    """
    try:
        if run is None:
            run = prepare_scan(targets, start_port, count, profile, **kwargs)
    except (TypeError, ValueError) as e:
        logger.error(f"Invalid scan parameters: {e}")
        return [], e
    try:
        return run.run(on_progress), None
    except Exception as e:
        logger.error(f"Scan failed: {e}")
        return run.snapshot(), e


def cancel(run):
    run.cancel()
