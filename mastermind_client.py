"""Command line client that plays Mastermind against a game server.

Connects to the server over TCP, lets ``code_breaker`` play a full game,
and reports the outcome. The exit status is 0 on a win, the server's
error code plus one on a parity error or lost game, and 1 on any other
failure.

Usage:
    mastermind-client <host> <port> [--timeout SECONDS] [-v]
"""

from __future__ import annotations

import argparse
import logging
import signal
import socket
import sys

import code_breaker
import mastermind
from mastermind import ArbiterError, Code, TransportError

logger = logging.getLogger(__name__)

_C = mastermind._Colors

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


# =============================================================================
# Transport
# =============================================================================

class ArbiterConnection:
    """Blocking TCP connection to the game server.

    ``submit`` performs exactly one guess / result round trip. Every
    socket failure surfaces as ``TransportError``.

    Attributes:
        host: Server name or address.
        port: Server port.
        timeout: Socket timeout in seconds, or None to block.
    """

    def __init__(
        self, host: str, port: int, timeout: float | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self._sock: socket.socket | None = None

    def connect(self) -> None:
        try:
            self._sock = socket.create_connection(
                (self.host, self.port), timeout=self.timeout,
            )
        except OSError as e:
            raise TransportError(
                f"Cannot connect to {self.host}:{self.port}: {e}"
            ) from e
        logger.info("Connected to %s:%d", self.host, self.port)

    @property
    def is_connected(self) -> bool:
        return self._sock is not None

    def submit(self, code: Code) -> int:
        """Send one guess and return the server's result byte.

        Raises:
            TransportError: If the connection is not open, a write or read
                fails, or the server closes the connection.
        """
        if self._sock is None:
            raise TransportError("Not connected")
        request = mastermind.encode_guess(code)
        try:
            self._sock.sendall(request)
            response = self._recv_exactly(mastermind.RESPONSE_WIDTH)
        except OSError as e:
            raise TransportError(f"Error talking to server: {e}") from e
        logger.debug("Sent %s, received %02x", request.hex(), response[0])
        return response[0]

    def _recv_exactly(self, n: int) -> bytes:
        assert self._sock is not None
        data = b""
        while len(data) < n:
            chunk = self._sock.recv(n - len(data))
            if not chunk:
                raise TransportError("Server closed the connection")
            data += chunk
        return data

    def close(self) -> None:
        """Close the socket. Calling it again does nothing."""
        if self._sock is None:
            return
        try:
            self._sock.close()
        finally:
            self._sock = None
            logger.debug("Connection to %s:%d closed", self.host, self.port)

    def __enter__(self) -> ArbiterConnection:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# =============================================================================
# Command line
# =============================================================================

def _port(value: str) -> int:
    try:
        port = int(value, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Error parsing port as number: {value!r}"
        ) from None
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(
            "Port needs to be a number from 1 to 65535"
        )
    return port


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mastermind-client",
        description="Solve an 8-color / 5-slot Mastermind game on a server.",
    )
    parser.add_argument("host", help="Server name or address")
    parser.add_argument("port", type=_port, help="Server port (1-65535)")
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Socket timeout in seconds (default: block)",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Log phases (-v) or every guess (-vv) to stderr",
    )
    return parser.parse_args(argv)


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def report_outcome(session: code_breaker.GameSession) -> int:
    """Print the outcome of a finished game and return the exit status."""
    if session.phase == code_breaker.Phase.WON:
        print(f"{_C.GREEN}Rounds: {session.round}{_C.RESET}")
        return EXIT_SUCCESS

    error = session.error
    if error & ArbiterError.PARITY:
        print(f"{_C.RED}Parity error{_C.RESET}", file=sys.stderr)
    if error & ArbiterError.GAME_LOST:
        print(f"{_C.RED}Game lost{_C.RESET}", file=sys.stderr)
    if not error:
        print("Game unexpectedly interrupted", file=sys.stderr)
    return int(error) + 1


def _install_signal_handlers(
    session: code_breaker.GameSession, connection: ArbiterConnection,
) -> dict[int, object]:
    """Release everything and exit on SIGINT, SIGTERM or SIGQUIT.

    Returns:
        The previous handlers, keyed by signal number.
    """
    def _handle(signum: int, frame: object) -> None:
        logger.info("Caught signal %d, shutting down", signum)
        session.release()
        connection.close()
        raise SystemExit(EXIT_SUCCESS)

    previous = {}
    for name in ("SIGINT", "SIGTERM", "SIGQUIT"):
        sig = getattr(signal, name, None)
        if sig is not None:
            previous[sig] = signal.signal(sig, _handle)
    return previous


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)

    session = code_breaker.GameSession()
    connection = ArbiterConnection(args.host, args.port, timeout=args.timeout)
    previous_handlers = _install_signal_handlers(session, connection)

    try:
        connection.connect()
        code_breaker.play_game(session, connection.submit)
    except mastermind.MastermindError as e:
        print(f"{_C.RED}mastermind-client: {e}{_C.RESET}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        connection.close()
        session.release()
        for sig, handler in previous_handlers.items():
            if handler is not None:
                signal.signal(sig, handler)

    return report_outcome(session)


if __name__ == "__main__":
    sys.exit(main())
