import enum
import io
import json
import logging
import random
import threading
from dataclasses import dataclass
from itertools import chain
from typing import Any, Iterable, Iterator, List, Optional, Tuple

from . import config
from .protocol import (
	DISCONNECT_PACKET_ID,
	ENCRYPTION_REQUEST_PACKET_ID,
	HANDSHAKE_PACKET_ID,
	LOGIN_START_PACKET_ID,
	LOGIN_SUCCESS_PACKET_ID,
	SET_COMPRESSION_PACKET_ID,
	STATE_LOGIN,
	Connection,
	ProtocolError,
	build_handshake,
	flatten_component,
	read_packet,
	read_string,
	write_long,
	write_packet,
	write_string,
)
from .versions import DEFAULT_CATALOG, VersionCatalog

# Login Start carries a player UUID from this protocol on
UUID_LOGIN_PROTOCOL = 759

# Login replies worth reading are short; anything larger is treated as an error
MAX_LOGIN_REPLY_LENGTH = 65535

# Phrases servers use when the declared protocol does not match theirs
VERSION_MISMATCH_PHRASES: Tuple[str, ...] = (
	'outdated client',
	'outdated server',
	'incompatible client',
	'incompatible version',
	'unsupported client version',
	'unsupported protocol',
	'wrong version',
	'version mismatch',
	"i'm still on",
	'please use minecraft',
	'please use version',
	# Russian
	'устаревший клиент',
	'устаревший сервер',
	'клиент устарел',
	'сервер устарел',
	'несовместим',
	'неподдерживаемая версия',
	'неверная версия',
	'используйте версию',
)

VERSION_MISMATCH_TRANSLATE_KEYS: Tuple[str, ...] = (
	'multiplayer.disconnect.outdated_client',
	'multiplayer.disconnect.outdated_server',
	'multiplayer.disconnect.incompatible',
)

WHITELIST_TRANSLATE_KEY = 'multiplayer.disconnect.not_whitelisted'

# Access-denial indicators
WHITELIST_INDICATORS: Tuple[str, ...] = (
	'whitelist',
	'white-list',
	'white list',
	'whitelisted',
	'not white-listed',
	'not on the whitelist',
	'not allowed',
	'not permitted',
	'access denied',
	'access is denied',
	'not authorized',
	'not authorised',
	'unauthorized',
	'no access',
	# Russian
	'вайтлист',
	'вайт-лист',
	'белый список',
	'белом списке',
	'белого списка',
	'нет в списке',
	'не разрешен',
	'не допущен',
	'доступ запрещ',
	'доступ закрыт',
	'нет доступа',
	'не авторизован',
	'вход запрещ',
)


class Outcome(enum.Enum):
	SUCCESS = "success"
	PROTOCOL_MISMATCH = "protocol_mismatch"
	ERROR = "error"


@dataclass(frozen=True)
class ProbeOutcome:
	"""Result of one login probe; only SUCCESS ends the version search."""
	kind: Outcome
	whitelist: bool = False

	@classmethod
	def success(cls, whitelist: bool) -> 'ProbeOutcome':
		return cls(Outcome.SUCCESS, whitelist)

	@classmethod
	def mismatch(cls) -> 'ProbeOutcome':
		return cls(Outcome.PROTOCOL_MISMATCH)

	@classmethod
	def error(cls) -> 'ProbeOutcome':
		return cls(Outcome.ERROR)

	@property
	def is_final(self) -> bool:
		return self.kind is Outcome.SUCCESS


def _decode_component(message: str) -> Any:
	"""Return the parsed chat component, or None when the reason is plain text."""
	stripped = message.strip()
	if not stripped.startswith(('{', '[', '"')):
		return None
	try:
		return json.loads(stripped)
	except ValueError:
		return None


def _translate_keys(component: Any) -> List[str]:
	keys: List[str] = []
	if isinstance(component, list):
		for part in component:
			keys.extend(_translate_keys(part))
	elif isinstance(component, dict):
		key = component.get('translate')
		if isinstance(key, str):
			keys.append(key.lower())
		for nested in ('with', 'extra'):
			if isinstance(component.get(nested), list):
				keys.extend(_translate_keys(component[nested]))
	return keys


def _display_text(component: Any) -> str:
	"""Component text including translation arguments, for keyword scanning."""
	if isinstance(component, dict):
		args = component.get('with')
		args_text = _display_text(args) if isinstance(args, list) else ""
		extra = component.get('extra')
		extra_text = _display_text(extra) if isinstance(extra, list) else ""
		return flatten_component({'text': component.get('text')}) + args_text + extra_text
	if isinstance(component, list):
		return "".join(_display_text(part) for part in component)
	return flatten_component(component)


def classify_disconnect(message: str) -> ProbeOutcome:
	"""
	Classify a login Disconnect reason.

	Version complaints come first (PROTOCOL_MISMATCH, try another protocol);
	otherwise any access-denial keyword means the server checks a whitelist.
	"""
	component = _decode_component(message)
	translate_keys = _translate_keys(component)
	plain = _display_text(component) if component is not None else message
	reason_lower = message.lower()
	plain_lower = plain.lower()

	if any(key in VERSION_MISMATCH_TRANSLATE_KEYS for key in translate_keys):
		return ProbeOutcome.mismatch()
	if any(phrase in reason_lower or phrase in plain_lower for phrase in VERSION_MISMATCH_PHRASES):
		return ProbeOutcome.mismatch()

	if WHITELIST_TRANSLATE_KEY in translate_keys:
		return ProbeOutcome.success(True)
	if any(indicator in plain_lower for indicator in WHITELIST_INDICATORS):
		return ProbeOutcome.success(True)
	return ProbeOutcome.success(False)


def probe_username(prefix: str = config.PROBE_USERNAME_PREFIX) -> str:
	digits = config.MAX_USERNAME_LENGTH - len(prefix)
	suffix = str(random.randrange(10 ** digits)).zfill(digits) if digits > 0 else ""
	return (prefix + suffix)[:config.MAX_USERNAME_LENGTH]


class WhitelistProbe:
	"""
	Infers whether a server rejects anonymous logins for access reasons.

	The handshake has to declare a protocol the server accepts, so candidate
	protocols are tried in order: the one matching the reported version label,
	the reported protocol number, the priority list, then the whole catalog.
	The first SUCCESS decides; if none succeeds the server is reported as not
	whitelisted.
	"""
	def __init__(self, catalog: Optional[VersionCatalog] = None,
			connect_timeout: float = config.CONNECT_TIMEOUT,
			read_timeout: float = config.LOGIN_READ_TIMEOUT,
			max_attempts: Optional[int] = config.MAX_LOGIN_ATTEMPTS,
			username: Optional[str] = None,
			logger: Optional[logging.Logger] = None):
		self.catalog = catalog or DEFAULT_CATALOG
		self.connect_timeout = connect_timeout
		self.read_timeout = read_timeout
		self.max_attempts = max_attempts
		self.username = username
		self.logger = logger or logging.getLogger(__name__)

	# ==============================
	# Candidate ordering
	# ==============================
	def candidate_protocols(self, version_label: Optional[str] = None,
			reported_protocol: int = -1) -> Iterator[int]:
		"""Yield each candidate protocol once, in resolution order."""
		detected = self.catalog.resolve(version_label)
		ordered: Iterable[int] = chain(
			[detected] if detected else [],
			[reported_protocol] if reported_protocol and reported_protocol > 0 else [],
			self.catalog.priority,
			self.catalog.protocols,
		)
		attempted: set[int] = set()
		for protocol in ordered:
			if protocol in attempted:
				continue
			attempted.add(protocol)
			yield protocol

	# ==============================
	# Single attempt
	# ==============================
	def _send_login_start(self, conn: Connection, protocol_version: int, username: str) -> None:
		"""Login Start: name, plus a null player UUID from 1.19 on."""
		data = io.BytesIO()
		write_string(data, username)
		if protocol_version >= UUID_LOGIN_PROTOCOL:
			write_long(data, 0)
			write_long(data, 0)
		write_packet(conn, LOGIN_START_PACKET_ID, data.getvalue())

	def attempt_login(self, host: str, port: int, protocol_version: int) -> ProbeOutcome:
		"""Run one handshake + Login Start exchange and classify the reply."""
		username = self.username or probe_username()
		try:
			with Connection.open(host, port, self.connect_timeout, self.read_timeout) as conn:
				write_packet(conn, HANDSHAKE_PACKET_ID,
					build_handshake(protocol_version, host, port, STATE_LOGIN))
				self._send_login_start(conn, protocol_version, username)
				packet_id, body = read_packet(conn, MAX_LOGIN_REPLY_LENGTH)
				if packet_id == DISCONNECT_PACKET_ID:
					reason = read_string(body)
		except (OSError, OverflowError, ProtocolError) as e:
			self.logger.debug(f"Login probe {host}:{port} protocol {protocol_version} failed: {e}")
			return ProbeOutcome.error()

		if packet_id == DISCONNECT_PACKET_ID:
			outcome = classify_disconnect(reason)
			self.logger.debug(f"{host}:{port} protocol {protocol_version} disconnected ({outcome.kind.value}): {reason}")
			return outcome
		if packet_id in (ENCRYPTION_REQUEST_PACKET_ID, LOGIN_SUCCESS_PACKET_ID, SET_COMPRESSION_PACKET_ID):
			return ProbeOutcome.success(False)
		self.logger.debug(f"Unexpected packet ID during login from {host}:{port}: {packet_id}")
		return ProbeOutcome.error()

	# ==============================
	# Version fallback
	# ==============================
	def check_whitelist(self, host: str, port: int, server_version: Optional[str] = None,
			reported_protocol: int = -1, cancel_event: Optional[threading.Event] = None) -> bool:
		"""Return True when the server is judged to enforce a whitelist."""
		attempts = 0
		for protocol_version in self.candidate_protocols(server_version, reported_protocol):
			if cancel_event is not None and cancel_event.is_set():
				self.logger.debug(f"Whitelist check for {host}:{port} cancelled")
				return False
			if self.max_attempts is not None and attempts >= self.max_attempts:
				break
			attempts += 1
			outcome = self.attempt_login(host, port, protocol_version)
			if outcome.is_final:
				self.logger.info(
					f"{host}:{port} answered login at protocol {protocol_version} "
					f"({self.catalog.label_for(protocol_version)}): whitelist={outcome.whitelist}")
				return outcome.whitelist
		self.logger.debug(f"No definitive login answer from {host}:{port} after {attempts} attempts")
		return False
