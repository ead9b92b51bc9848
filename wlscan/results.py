import re
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, NamedTuple, Optional, Tuple

# Legacy formatting codes: section sign followed by a colour/style character
CONTROL_CODE_PATTERN = re.compile(r"§[0-9a-fk-orx]", re.IGNORECASE)
MOTD_DISPLAY_LIMIT = 60
PING_NOT_MEASURED = -1


def clean_motd(motd: str) -> str:
    """Strip control codes and fold newlines so the MOTD fits on one line."""
    text = CONTROL_CODE_PATTERN.sub("", motd or "")
    text = text.replace("\r", " ").replace("\n", " ")
    return re.sub(r" {2,}", " ", text).strip()


@dataclass(frozen=True)
class EndpointResult:
    address: str
    port: int
    online: bool = False
    version: str = ""
    players_online: int = 0
    players_max: int = 0
    motd: str = ""
    has_whitelist: bool = False
    ping_ms: int = PING_NOT_MEASURED
    protocol: int = -1

    def __post_init__(self):
        if not self.online and (
            self.has_whitelist
            or self.players_online
            or self.players_max
            or self.ping_ms != PING_NOT_MEASURED
        ):
            raise ValueError(f"Offline result for {self.endpoint} cannot carry online data")

    @classmethod
    def offline(cls, address: str, port: int) -> "EndpointResult":
        return cls(address, port)

    @property
    def endpoint(self) -> str:
        return f"{self.address}:{self.port}"

    @property
    def display_motd(self) -> str:
        return clean_motd(self.motd)

    def render(self) -> str:
        """One report line: addr:port | version | players | ping | whitelist | motd."""
        if not self.online:
            return f"{self.endpoint} is Offline!"
        motd = self.display_motd
        if len(motd) > MOTD_DISPLAY_LIMIT:
            motd = motd[:MOTD_DISPLAY_LIMIT - 3] + "..."
        return "%s:%-5d | %-15s | Players: %3d/%-3d | Ping: %4dms | WL: %-3s | %s" % (
            self.address,
            self.port,
            self.version,
            self.players_online,
            self.players_max,
            self.ping_ms,
            "YES" if self.has_whitelist else "NO",
            motd,
        )

    def __str__(self):
        return self.render()


@dataclass(frozen=True)
class ScanProgress:
    scanned: int
    total: int
    last_result: Optional[EndpointResult]
    online_total: int
    whitelist_total: int

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        return (self.scanned * 100) // self.total


class ReportSections(NamedTuple):
    online_with_players: List[EndpointResult]
    whitelist_with_players: List[EndpointResult]
    whitelist_no_players: List[EndpointResult]
    online_no_players: List[EndpointResult]


def sort_by_port(results: Iterable[EndpointResult]) -> List[EndpointResult]:
    return sorted(results, key=lambda r: (r.port, r.address))


def categorize(results: Iterable[EndpointResult]) -> ReportSections:
    """Split online results into the four report groups, each port-ordered."""
    sections = ReportSections([], [], [], [])
    for info in sort_by_port(results):
        if not info.online:
            continue
        if info.has_whitelist:
            if info.players_online > 0:
                sections.whitelist_with_players.append(info)
            else:
                sections.whitelist_no_players.append(info)
        elif info.players_online > 0:
            sections.online_with_players.append(info)
        else:
            sections.online_no_players.append(info)
    return sections


def version_distribution(results: Iterable[EndpointResult]) -> List[Tuple[str, int]]:
    """Count online servers per reported version, most common first."""
    tally = Counter(r.version or "Unknown" for r in results if r.online)
    return sorted(tally.items(), key=lambda item: (-item[1], item[0]))
