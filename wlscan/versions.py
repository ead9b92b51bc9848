import json
import logging
import os
import re
import time
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import requests

from . import config

logger = logging.getLogger(__name__)

# ===============================
# Built-in protocol definitions
# ===============================
# Ordered oldest to newest; patch releases share a protocol number.
DEFAULT_VERSION_TO_PROTOCOL: List[Tuple[str, int]] = [
	# 1.7.x series
	("1.7.2", 4), ("1.7.4", 4), ("1.7.5", 4), ("1.7.6", 5), ("1.7.10", 5),
	# 1.8.x series
	("1.8", 47), ("1.8.8", 47), ("1.8.9", 47),
	# 1.9.x series
	("1.9", 107), ("1.9.1", 108), ("1.9.2", 109), ("1.9.3", 110), ("1.9.4", 110),
	# 1.10.x - 1.11.x series
	("1.10", 210), ("1.10.1", 210), ("1.10.2", 210),
	("1.11", 315), ("1.11.1", 316), ("1.11.2", 316),
	# 1.12.x series
	("1.12", 335), ("1.12.1", 338), ("1.12.2", 340),
	# 1.13.x series
	("1.13", 393), ("1.13.1", 401), ("1.13.2", 404),
	# 1.14.x series
	("1.14", 477), ("1.14.1", 480), ("1.14.2", 485), ("1.14.3", 490), ("1.14.4", 498),
	# 1.15.x series
	("1.15", 573), ("1.15.1", 575), ("1.15.2", 578),
	# 1.16.x series
	("1.16", 735), ("1.16.1", 736), ("1.16.2", 751), ("1.16.3", 753), ("1.16.4", 754), ("1.16.5", 754),
	# 1.17.x series
	("1.17", 755), ("1.17.1", 756),
	# 1.18.x series
	("1.18", 757), ("1.18.1", 757), ("1.18.2", 758),
	# 1.19.x series
	("1.19", 759), ("1.19.1", 760), ("1.19.2", 760), ("1.19.3", 761), ("1.19.4", 762),
	# 1.20.x series
	("1.20", 763), ("1.20.1", 763), ("1.20.2", 764), ("1.20.3", 765), ("1.20.4", 765),
	("1.20.5", 766), ("1.20.6", 766),
	# 1.21.x series
	("1.21", 767), ("1.21.1", 767), ("1.21.2", 768), ("1.21.3", 768), ("1.21.4", 769),
	("1.21.5", 770), ("1.21.6", 771), ("1.21.7", 772), ("1.21.8", 772),
	("1.21.9", 773), ("1.21.10", 773),
]

# Most populated releases first
DEFAULT_PRIORITY_PROTOCOLS: List[int] = [
	773, 772, 771, 770, 769, 768, 767, 766, 765, 764, 763, 762, 761, 760, 759,
	758, 757, 756, 755, 754, 340, 47,
]

# Server software names that precede or wrap the game version in status replies
SERVER_SOFTWARE_PREFIXES: Tuple[str, ...] = (
	"requires mc", "craftbukkit", "bungeecord", "pufferfish", "waterfall", "neoforge",
	"velocity", "arclight", "leaves", "purpur", "spigot", "bukkit", "sponge", "mohist",
	"paper", "folia", "forge", "fabric", "quilt", "magma", "catserver", "tuinity",
)

MIN_PROTOCOL = 4
_PARENTHESIZED = re.compile(r"\([^)]*\)")


def _clean_label(version_label: str) -> str:
	"""Strip server software names (case-insensitive) from a status version label."""
	cleaned = _PARENTHESIZED.sub(" ", version_label).strip()
	changed = True
	while changed and cleaned:
		changed = False
		lowered = cleaned.lower()
		for prefix in SERVER_SOFTWARE_PREFIXES:
			if lowered.startswith(prefix):
				cleaned = cleaned[len(prefix):].lstrip(" :-_/v")
				changed = True
				break
	return cleaned.strip()


class VersionCatalog:
	"""
	Read-only table of version labels to protocol numbers.

	Entries keep their catalogue order (oldest to newest); ``protocols``
	lists each protocol number once in that order.
	"""

	def __init__(self, entries: Iterable[Tuple[str, int]], priority: Iterable[int] = ()):
		ordered: Dict[str, int] = {}
		for label, protocol in entries:
			ordered[str(label)] = int(protocol)
		self._entries: Mapping[str, int] = MappingProxyType(ordered)
		self._protocols: Tuple[int, ...] = tuple(dict.fromkeys(ordered.values()))
		self._priority: Tuple[int, ...] = tuple(dict.fromkeys(int(p) for p in priority))
		# Longest keys first for prefix matching
		self._keys_by_length: Tuple[str, ...] = tuple(sorted(ordered, key=len, reverse=True))

	@property
	def entries(self) -> Mapping[str, int]:
		return self._entries

	@property
	def protocols(self) -> Tuple[int, ...]:
		return self._protocols

	@property
	def priority(self) -> Tuple[int, ...]:
		return self._priority

	@property
	def latest(self) -> int:
		"""Protocol number of the newest catalogued entry."""
		if not self._protocols:
			raise LookupError("Version catalog is empty")
		return max(self._protocols)

	def label_for(self, protocol: int) -> str:
		"""Return a "1.20/1.20.1" style label for a protocol number."""
		labels = [label for label, proto in self._entries.items() if proto == protocol]
		return "/".join(labels) if labels else f"protocol {protocol}"

	def resolve(self, version_label: Optional[str]) -> Optional[int]:
		"""
		Derive a protocol number from a status-reported version label.

		Server software prefixes are stripped first, then the remainder is
		matched exactly, by its first whitespace-delimited token, and finally
		against the longest catalogue key that prefixes it.
		"""
		if not version_label:
			return None
		cleaned = _clean_label(version_label)
		if not cleaned:
			return None

		if cleaned in self._entries:
			return self._entries[cleaned]

		token = cleaned.split()[0]
		if token in self._entries:
			return self._entries[token]

		for known_version in self._keys_by_length:
			if cleaned.startswith(known_version):
				return self._entries[known_version]
		return None

	@classmethod
	def default(cls) -> 'VersionCatalog':
		return cls(DEFAULT_VERSION_TO_PROTOCOL, DEFAULT_PRIORITY_PROTOCOLS)

	@classmethod
	def load(cls, auto_update: bool = False, cache_path: Optional[str] = None,
			cache_ttl: float = config.PROTOCOL_CACHE_TTL_SECONDS) -> 'VersionCatalog':
		"""
		Build the process-wide catalog once at start-up.

		With auto_update the built-in table is merged with the remote
		PrismarineJS list (served from a JSON cache while it is fresh).
		Every failure falls back to the built-in table.
		"""
		if not auto_update:
			return cls.default()
		cache_path = cache_path or config.PROTOCOL_CACHE_PATH
		cached = _load_cache(cache_path)
		if cached and (time.time() - cached.get("_mtime", 0) < cache_ttl):
			try:
				entries = [(str(label), int(proto)) for label, proto in cached["entries"]]
				if entries:
					return cls(entries, DEFAULT_PRIORITY_PROTOCOLS)
			except (KeyError, TypeError, ValueError):
				logger.warning(f"Ignoring malformed protocol cache at {cache_path}")
		remote = _fetch_remote_versions()
		entries = merge_protocols(DEFAULT_VERSION_TO_PROTOCOL, remote)
		if remote:
			_save_cache(cache_path, {"entries": entries})
		return cls(entries, DEFAULT_PRIORITY_PROTOCOLS)


def merge_protocols(built_in: List[Tuple[str, int]], remote_items: Optional[List[dict]]) -> List[Tuple[str, int]]:
	"""Merge built-ins with a remote list into catalogue order (oldest first)."""
	merged: Dict[str, int] = dict(built_in)
	if not remote_items:
		return list(merged.items())
	for item in remote_items:
		if not isinstance(item, dict):
			continue
		label = item.get("minecraftVersion")
		proto = item.get("version")
		if not isinstance(label, str) or not isinstance(proto, int):
			continue
		# Guardrails: releases only, no pre-netty or snapshot numbering
		if item.get("releaseType", "release") != "release" or item.get("usesNetty") is False:
			continue
		if proto < MIN_PROTOCOL or proto >= 0x40000000:
			continue
		merged.setdefault(label, proto)
	# sorted() is stable, so patch labels keep their relative order
	return sorted(merged.items(), key=lambda entry: entry[1])


def _load_cache(cache_path: str) -> Optional[dict]:
	try:
		if os.path.exists(cache_path):
			st = os.stat(cache_path)
			with open(cache_path, "r") as f:
				data = json.load(f)
			if isinstance(data, dict):
				data["_mtime"] = st.st_mtime
				return data
	except (OSError, ValueError) as e:
		logger.debug(f"Protocol cache unreadable: {e}")
	return None


def _save_cache(cache_path: str, mapping: dict) -> None:
	try:
		directory = os.path.dirname(cache_path)
		if directory:
			os.makedirs(directory, exist_ok=True)
		with open(cache_path, "w") as f:
			json.dump(mapping, f)
	except OSError as e:
		logger.debug(f"Could not write protocol cache: {e}")


def _fetch_remote_versions(timeout: float = 2.0) -> Optional[List[dict]]:
	for url in config.REMOTE_PROTOCOL_URLS:
		try:
			resp = requests.get(url, timeout=timeout)
			if resp.status_code == 200:
				data = resp.json()
				if isinstance(data, list):
					return data
		except (requests.RequestException, ValueError) as e:
			logger.debug(f"Remote protocol list unavailable from {url}: {e}")
			continue
	return None


DEFAULT_CATALOG = VersionCatalog.default()
