"""
Error taxonomy for the status-query client and the target store.

Probe errors carry a ``kind`` string which ends up in ProbeResult.error.
They are caught inside the probe client and never reach callers of the
fleet prober. Store errors do propagate: an unreadable or unwritable target
list is an operational failure the API layer reports as HTTP 503.
"""


class ProbeError(Exception):
    """Base class for everything that can go wrong while probing one target."""

    kind = "connect-error"


class ResolutionFailure(ProbeError):
    """Hostname lookup failed. Recovered locally by using the raw hostname."""

    kind = "resolution-error"


class ConnectFailure(ProbeError):
    kind = "connect-error"


class ProbeTimeout(ProbeError):
    kind = "timeout"


class FramingError(ProbeError):
    """Bad VarInt, wrong packet id or a length that does not fit the data."""

    kind = "parse-error"


class IncompleteVarIntError(FramingError):
    """The buffer ended in the middle of a VarInt; more bytes are needed."""


class IncompletePacketError(FramingError):
    """The buffer holds fewer bytes than the packet's length prefix declares."""


class PayloadParseError(ProbeError):
    """The JSON payload could not be decoded or has an unusable shape."""

    kind = "parse-error"


class PrematureClose(ProbeError):
    """The server closed the connection before sending a single byte."""

    kind = "closed-prematurely"


class StoreError(RuntimeError):
    """The target list could not be read from or written to disk."""


class TargetNotFoundError(KeyError):
    def __init__(self, target_id: int):
        super().__init__(target_id)
        self.target_id = target_id

    def __str__(self) -> str:
        return f"target {self.target_id} not found"
