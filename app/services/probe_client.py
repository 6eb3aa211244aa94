import asyncio
import enum
import hashlib
import logging
import socket
import time
from typing import Optional

from app.config import get_settings
from app.errors import (
    ConnectFailure,
    IncompletePacketError,
    PayloadParseError,
    PrematureClose,
    ProbeError,
    ProbeTimeout,
    ResolutionFailure,
)
from app.models.status import ProbeResult, StatusResponseBody
from app.models.target import Target
from app.protocol.packets import (
    HANDSHAKE_PACKET_ID,
    STATUS_REQUEST_PACKET_ID,
    build_handshake,
    build_status_request,
    envelope_size,
    frame,
    parse_status_response,
)

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 64 * 1024


class ProbeState(enum.Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    AWAITING_RESPONSE = "awaiting-response"
    DONE = "done"
    FAILED = "failed"


def target_fingerprint(address: str, port: int) -> str:
    """Short stable key for ``address:port``, independent of the target id."""
    digest = hashlib.md5(f"{address}:{port}".encode("utf-8"), usedforsecurity=False)
    return digest.hexdigest()[:8]


class StatusProbe:
    """
    One status query against one target over a fresh TCP connection.

    The whole exchange runs as a single coroutine under one deadline of
    ``timeout + grace``. Connect and every read are additionally bounded by
    ``timeout`` alone, so a silent server is reported before the hard
    deadline fires. Whatever happens, run() returns exactly one ProbeResult.
    """

    def __init__(
        self,
        target: Target,
        timeout_ms: int,
        grace_ms: int,
        protocol_version: int,
        resolve_hostnames: bool = True,
    ):
        self.target = target
        self.timeout = timeout_ms / 1000.0
        self.deadline = (timeout_ms + grace_ms) / 1000.0
        self.protocol_version = protocol_version
        self.resolve_hostnames = resolve_hostnames
        self.state = ProbeState.IDLE
        self.ping_ms: Optional[int] = None
        self._started = 0.0

    async def run(self) -> ProbeResult:
        self._started = time.perf_counter()
        try:
            body = await asyncio.wait_for(self._exchange(), timeout=self.deadline)
        except asyncio.TimeoutError:
            return self._failed(
                ProbeTimeout(f"no status response within {self.deadline:.1f}s")
            )
        except ProbeError as exc:
            return self._failed(exc)
        return self._done(body)

    def _elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._started) * 1000)

    def _transition(self, state: ProbeState) -> None:
        logger.debug(
            "probe %s:%s %s -> %s",
            self.target.address,
            self.target.port,
            self.state.value,
            state.value,
        )
        self.state = state

    async def _resolve(self) -> str:
        self._transition(ProbeState.RESOLVING)
        host = self.target.address
        if not self.resolve_hostnames:
            return host
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(
                host, self.target.port, type=socket.SOCK_STREAM
            )
            if not infos:
                raise ResolutionFailure(f"no addresses for {host}")
            return infos[0][4][0]
        except (OSError, UnicodeError, ResolutionFailure) as exc:
            # Connect with the raw name instead; the connect step reports
            # the real failure if the name is unusable.
            logger.debug("resolving %s failed (%s), using it unresolved", host, exc)
            return host

    async def _exchange(self) -> StatusResponseBody:
        connect_host = await self._resolve()

        self._transition(ProbeState.CONNECTING)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(connect_host, self.target.port),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProbeTimeout(
                f"connect to {connect_host}:{self.target.port} timed out"
            ) from exc
        except (OSError, UnicodeError) as exc:
            # UnicodeError: name not IDNA-encodable, e.g. a label over 63 chars
            raise ConnectFailure(str(exc) or exc.__class__.__name__) from exc
        self.ping_ms = self._elapsed_ms()

        try:
            self._transition(ProbeState.HANDSHAKING)
            try:
                handshake = build_handshake(
                    self.target.address, self.target.port, self.protocol_version
                )
            except UnicodeError as exc:
                raise ConnectFailure(f"host name cannot be encoded: {exc}") from exc
            writer.write(frame(HANDSHAKE_PACKET_ID, handshake))
            writer.write(frame(STATUS_REQUEST_PACKET_ID, build_status_request()))
            try:
                await writer.drain()
            except OSError as exc:
                raise ConnectFailure(str(exc) or exc.__class__.__name__) from exc

            self._transition(ProbeState.AWAITING_RESPONSE)
            packet = await self._read_packet(reader)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as exc:
                logger.debug("closing probe socket failed: %s", exc)

        body = parse_status_response(packet)
        if body.players is None:
            raise PayloadParseError("status response has no players field")
        return body

    async def _read_packet(self, reader: asyncio.StreamReader) -> bytes:
        """Accumulate chunks until the first packet's declared length is met."""
        buffer = bytearray()
        while True:
            size = envelope_size(buffer)
            if size is not None and len(buffer) >= size:
                return bytes(buffer[:size])

            try:
                chunk = await asyncio.wait_for(
                    reader.read(_READ_CHUNK_BYTES), timeout=self.timeout
                )
            except asyncio.TimeoutError as exc:
                raise ProbeTimeout(
                    f"no data from server for {self.timeout:.1f}s"
                ) from exc
            except OSError as exc:
                raise ConnectFailure(str(exc) or exc.__class__.__name__) from exc

            if not chunk:
                if not buffer:
                    raise PrematureClose("server closed the connection before sending data")
                raise IncompletePacketError(
                    f"connection closed after {len(buffer)} bytes of an incomplete response"
                )
            buffer.extend(chunk)

    def _common_fields(self) -> dict:
        return dict(
            target_id=self.target.id,
            name=self.target.name,
            address=self.target.address,
            port=self.target.port,
            fingerprint=target_fingerprint(self.target.address, self.target.port),
            category=self.target.category,
            description=self.target.description,
            ping_ms=self.ping_ms,
        )

    def _done(self, body: StatusResponseBody) -> ProbeResult:
        self._transition(ProbeState.DONE)
        players = body.players
        return ProbeResult(
            **self._common_fields(),
            online=True,
            latency_ms=self._elapsed_ms(),
            version=body.version.name,
            protocol_number=body.version.protocol,
            players_online=max(players.online, 0),
            players_max=max(players.max, 0),
            player_sample=list(players.sample),
            motd=body.description,
            favicon=body.favicon,
        )

    def _failed(self, exc: ProbeError) -> ProbeResult:
        self._transition(ProbeState.FAILED)
        logger.info(
            "probe %s (%s:%s) failed: %s: %s",
            self.target.name,
            self.target.address,
            self.target.port,
            exc.kind,
            exc,
        )
        return ProbeResult(
            **self._common_fields(),
            online=False,
            error=exc.kind,
            error_detail=str(exc) or None,
        )


async def probe_target(
    target: Target,
    *,
    timeout_ms: Optional[int] = None,
    grace_ms: Optional[int] = None,
    protocol_version: Optional[int] = None,
    resolve_hostnames: Optional[bool] = None,
) -> ProbeResult:
    """
    Query the status of a single target and return a ProbeResult.

    Unset keyword arguments fall back to the values in Settings. Failures
    never raise; they produce an offline result whose ``error`` is one of
    timeout, connect-error, parse-error or closed-prematurely.
    """
    settings = get_settings()
    probe = StatusProbe(
        target,
        timeout_ms=settings.probe_timeout_ms if timeout_ms is None else timeout_ms,
        grace_ms=settings.probe_grace_ms if grace_ms is None else grace_ms,
        protocol_version=(
            settings.protocol_version if protocol_version is None else protocol_version
        ),
        resolve_hostnames=(
            settings.resolve_hostnames if resolve_hostnames is None else resolve_hostnames
        ),
    )
    return await probe.run()
