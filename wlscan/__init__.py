"""Minecraft server discovery and whitelist detection."""

from .protocol import InvalidPayloadSize, MalformedVarInt, ProtocolError, UnexpectedPacketId
from .results import EndpointResult, ScanProgress
from .scanner import PROFILES, ScanOrchestrator, ScanState, ThroughputProfile, cancel, prepare_scan, run_scan
from .status import StatusProber, probe_status
from .versions import DEFAULT_CATALOG, VersionCatalog
from .whitelist_probe import Outcome, ProbeOutcome, WhitelistProbe, classify_disconnect

__version__ = "1.0.0"
