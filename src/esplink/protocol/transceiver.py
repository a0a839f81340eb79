"""
Command transceiver: one request, one matching response, bounded retries.

This is the single synchronization point with the device. The link is
strictly half-duplex, so a transceive call blocks until the device answers,
the attempt budget runs out, or the transport itself fails.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from esplink.errors import (
    DeviceError,
    FramingError,
    MalformedResponseError,
    ProtocolTimeout,
    ResponseMismatchError,
)
from esplink.protocol.commands import (
    ROM_STATUS_BYTES,
    Command,
    Response,
    describe_status,
    parse_response,
)
from esplink.protocol.slip import read_frame, slip_encode

logger = logging.getLogger(__name__)

# Frames with a foreign opcode echo tolerated per attempt (the ROM answers
# SYNC several times, the extra replies arrive ahead of the next command's)
MAX_STALE_RESPONSES = 16


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and per-attempt response timeout (seconds)."""
    max_attempts: int
    timeout: float

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")


DEFAULT_POLICY = RetryPolicy(max_attempts=3, timeout=3.0)
SYNC_POLICY = RetryPolicy(max_attempts=50, timeout=0.1)
DETECT_POLICY = RetryPolicy(max_attempts=10, timeout=1.0)
PROBE_POLICY = RetryPolicy(max_attempts=1, timeout=2.0)
FLASH_BEGIN_POLICY = RetryPolicy(max_attempts=2, timeout=15.0)
FLASH_DATA_POLICY = RetryPolicy(max_attempts=2, timeout=1.5)


class Transceiver:
    """
    Sends commands over a transport and waits for their responses.

    Args:
        transport: Object with write(data), read(size, timeout) and
            reset_input()
        status_bytes_length: Status trailer length of the connected ROM
    """

    def __init__(self, transport, status_bytes_length: int = ROM_STATUS_BYTES):
        self.transport = transport
        self.status_bytes_length = status_bytes_length

    def _exchange(self, command: Command, frame: bytes, timeout: float) -> Response:
        self.transport.write(frame)
        logger.debug(f">>> {command.name} {frame[:32].hex()}" + ("..." if len(frame) > 32 else ""))

        for _ in range(MAX_STALE_RESPONSES):
            raw = read_frame(self.transport, timeout)
            try:
                return parse_response(raw, command, self.status_bytes_length)
            except ResponseMismatchError as e:
                logger.debug(f"Skipping stale response: {e}")
        raise MalformedResponseError(
            f"No {command.name} response among {MAX_STALE_RESPONSES} frames"
        )

    def transceive(self, command: Command, policy: RetryPolicy = DEFAULT_POLICY) -> Response:
        """
        Send a command and return its successful response.

        Framing errors, malformed responses and nonzero device status fail
        the attempt; the same command is resent until policy.max_attempts
        attempts (including the first) have been made.

        Returns:
            Response with status 0

        Raises:
            DeviceError: Every attempt was answered with a nonzero status
            ProtocolTimeout: Attempts exhausted without a valid success
            TransportError: The transport failed (not retried)
        """
        frame = slip_encode(command.encode())
        last_exc: Optional[BaseException] = None
        device_errors = 0

        for attempt in range(1, policy.max_attempts + 1):
            try:
                response = self._exchange(command, frame, policy.timeout)
            except (FramingError, MalformedResponseError) as exc:
                last_exc = exc
            else:
                if response.ok:
                    if attempt > 1:
                        logger.debug(f"{command.name} succeeded on attempt {attempt}")
                    return response
                device_errors += 1
                last_exc = DeviceError(
                    int(command.opcode),
                    response.status,
                    response.error,
                    describe_status(response.error),
                )

            if attempt < policy.max_attempts:
                logger.debug(
                    f"Retry {attempt}/{policy.max_attempts - 1} for {command.name}: {last_exc}"
                )
                self.transport.reset_input()

        if device_errors == policy.max_attempts:
            raise last_exc
        raise ProtocolTimeout(int(command.opcode), policy.max_attempts, last_exc)
