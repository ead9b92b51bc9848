import argparse
import logging
import signal
import threading
from ipaddress import IPv4Address

from rich.console import Console
from rich.live import Live
from rich.table import Table

from . import config
from .report import save_report
from .scanner import PROFILES, ScanOrchestrator
from .status import StatusProber
from .versions import VersionCatalog
from .whitelist_probe import WhitelistProbe

console = Console()
logger = logging.getLogger("wlscan")

MAX_RANGE_SIZE = 65536


def expand_targets(values):
    """Expand "a b", "a,b" and "10.0.0.1-10.0.0.10" into a list of addresses."""
    targets = []
    for value in values:
        for token in value.replace(",", " ").split():
            if "-" in token:
                start_str, _, end_str = token.partition("-")
                try:
                    start = int(IPv4Address(start_str))
                    end = int(IPv4Address(end_str))
                except ValueError:
                    # Hostnames may contain dashes
                    targets.append(token)
                    continue
                if end < start:
                    start, end = end, start
                if end - start + 1 > MAX_RANGE_SIZE:
                    raise ValueError(f"Range {token} is larger than {MAX_RANGE_SIZE} addresses")
                targets.extend(str(IPv4Address(v)) for v in range(start, end + 1))
            else:
                targets.append(token)
    return list(dict.fromkeys(targets))


class Dashboard:
    """Holds the latest progress; the Live refresh thread renders it."""

    def __init__(self, total, profile):
        self.total = total
        self.profile = profile
        self.progress = None
        self.status = "Scanning..."

    def update(self, progress):
        self.progress = progress

    def render(self):
        progress = self.progress
        table = Table(title="Minecraft Whitelist Scan Status")
        table.add_column("Task", justify="left", style="cyan", no_wrap=True)
        table.add_column("Status", justify="right", style="green")
        scanned = progress.scanned if progress else 0
        percent = progress.percent if progress else 0
        table.add_row("Status", self.status)
        table.add_row("Profile", str(self.profile))
        table.add_row("Progress", f"{scanned}/{self.total} ({percent}%)")
        table.add_row("Online", str(progress.online_total if progress else 0))
        table.add_row("Whitelist", str(progress.whitelist_total if progress else 0))
        if progress and progress.last_result is not None:
            table.add_row("Last", progress.last_result.render()[:80])
        return table


def build_parser():
    parser = argparse.ArgumentParser(description="Minecraft server and whitelist scanner")
    parser.add_argument("targets", nargs="+",
                        help="Addresses: IP, IP1-IP10 or several separated by spaces/commas.")
    parser.add_argument("--port", "-p", type=int, default=config.DEFAULT_PORT,
                        help=f"First port to scan (default: {config.DEFAULT_PORT}).")
    parser.add_argument("--count", "-c", type=int, default=config.DEFAULT_PORT_COUNT,
                        help=f"Number of consecutive ports (default: {config.DEFAULT_PORT_COUNT}).")
    parser.add_argument("--profile", choices=list(PROFILES), default=config.DEFAULT_PROFILE,
                        help=f"Throughput profile (default: {config.DEFAULT_PROFILE}).")
    parser.add_argument("--keep-offline", action="store_true",
                        help="Single target only: list offline ports in the report too.")
    parser.add_argument("--output", "-o", default=config.OUTPUT_FILENAME,
                        help=f"Report file (default: {config.OUTPUT_FILENAME}).")
    parser.add_argument("--refresh-versions", action="store_true", default=config.PROTOCOL_AUTO_UPDATE,
                        help="Merge the remote protocol version list into the catalog.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s',
        handlers=[logging.FileHandler(config.LOG_FILE)],
    )

    try:
        targets = expand_targets(args.targets)
    except ValueError as e:
        console.print(f"[ERROR] {e}", style="bold red")
        return 2
    if not 0 < args.port <= 65535 or args.count < 1 or args.port + args.count - 1 > 65535:
        console.print("[ERROR] Port range must stay within 1-65535.", style="bold red")
        return 2

    catalog = VersionCatalog.load(auto_update=args.refresh_versions)
    scanner = ScanOrchestrator(
        targets, args.port, args.count, args.profile,
        status_prober=StatusProber(catalog=catalog),
        whitelist_probe=WhitelistProbe(catalog=catalog),
        keep_offline=args.keep_offline,
    )
    dashboard = Dashboard(scanner.total, scanner.profile)

    def signal_handler(sig, frame):
        dashboard.status = "Cancelling..."
        logger.info("Interrupt received. Shutting down gracefully...")
        # cancel() waits on the callback lock, keep it off the main thread
        threading.Thread(target=scanner.cancel, daemon=True).start()

    previous = {sig: signal.signal(sig, signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        with Live(get_renderable=dashboard.render, console=console, refresh_per_second=4):
            results = scanner.run(dashboard.update)
            dashboard.status = scanner.state.value.capitalize()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    save_report(args.output, results, targets, args.port, args.count, scanner.profile)
    console.print(
        f"Scan {scanner.state.value}: {scanner.scanned.value}/{scanner.total} scanned, "
        f"{scanner.online.value} online, {scanner.whitelisted.value} whitelisted.",
        style="bold green")
    console.print(f"Results saved to {args.output}")
    return 0
