"""Tests for the TCP client, against a loopback game server."""

import contextlib
import io
import signal
import socket
import socketserver
import threading
import unittest
from collections.abc import Callable

import code_breaker
import mastermind
import mastermind_client
from code_breaker import GameSession, Phase
from mastermind import Arbiter, ArbiterError, Code, TransportError

SECRET = Code.from_string("red green green beige white")

# Answers one request, or None to hang up without answering.
Responder = Callable[[bytes], bytes | None]


class _GameHandler(socketserver.StreamRequestHandler):

    def handle(self) -> None:
        respond = self.server.make_responder()
        while True:
            request = self.rfile.read(mastermind.REQUEST_WIDTH)
            if len(request) < mastermind.REQUEST_WIDTH:
                return
            response = respond(request)
            if response is None:
                return
            self.wfile.write(response)


class _GameServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, make_responder: Callable[[], Responder]) -> None:
        super().__init__(("127.0.0.1", 0), _GameHandler)
        self.make_responder = make_responder

    @property
    def port(self) -> int:
        return self.server_address[1]


@contextlib.contextmanager
def _serve(make_responder: Callable[[], Responder]):
    server = _GameServer(make_responder)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


def _arbiter_server(secret: Code = SECRET):
    return _serve(lambda: Arbiter(secret).respond)


def _unused_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestArbiterConnection(unittest.TestCase):
    """Tests for ArbiterConnection."""

    def test_submit_round_trip(self) -> None:
        with _arbiter_server() as server:
            with mastermind_client.ArbiterConnection(
                "127.0.0.1", server.port, timeout=5,
            ) as connection:
                value = connection.submit(Code.of(
                    mastermind.Color.BEIGE, mastermind.Color.BEIGE,
                    mastermind.Color.DARKBLUE, mastermind.Color.GREEN,
                    mastermind.Color.ORANGE,
                ))
        result = mastermind.GuessResult.from_byte(value)
        self.assertEqual((result.red, result.white), (0, 2))
        self.assertEqual(result.error, ArbiterError.NONE)

    def test_full_game(self) -> None:
        with _arbiter_server() as server:
            connection = mastermind_client.ArbiterConnection(
                "127.0.0.1", server.port, timeout=5,
            )
            connection.connect()
            try:
                session = GameSession()
                phase = code_breaker.play_game(session, connection.submit)
            finally:
                connection.close()
        self.assertEqual(phase, Phase.WON)
        self.assertGreater(session.round, 1)

    def test_server_hangs_up(self) -> None:
        with _serve(lambda: (lambda request: None)) as server:
            with mastermind_client.ArbiterConnection(
                "127.0.0.1", server.port, timeout=5,
            ) as connection:
                with self.assertRaises(TransportError):
                    connection.submit(Code.blank())

    def test_connection_refused(self) -> None:
        connection = mastermind_client.ArbiterConnection(
            "127.0.0.1", _unused_port(), timeout=5,
        )
        with self.assertRaises(TransportError):
            connection.connect()
        self.assertFalse(connection.is_connected)

    def test_submit_before_connect(self) -> None:
        connection = mastermind_client.ArbiterConnection("127.0.0.1", 1)
        with self.assertRaises(TransportError):
            connection.submit(Code.blank())

    def test_close_twice(self) -> None:
        with _arbiter_server() as server:
            connection = mastermind_client.ArbiterConnection(
                "127.0.0.1", server.port, timeout=5,
            )
            connection.connect()
            self.assertTrue(connection.is_connected)
            connection.close()
            connection.close()
            self.assertFalse(connection.is_connected)


class TestParseArgs(unittest.TestCase):
    """Tests for command line parsing."""

    def test_defaults(self) -> None:
        args = mastermind_client.parse_args(["localhost", "4242"])
        self.assertEqual(args.host, "localhost")
        self.assertEqual(args.port, 4242)
        self.assertIsNone(args.timeout)
        self.assertEqual(args.verbose, 0)

    def test_options(self) -> None:
        args = mastermind_client.parse_args(
            ["example.org", "65535", "--timeout", "2.5", "-vv"],
        )
        self.assertEqual(args.port, 65535)
        self.assertEqual(args.timeout, 2.5)
        self.assertEqual(args.verbose, 2)

    def test_invalid_ports(self) -> None:
        for port in ("0", "65536", "abc", "-1"):
            with self.subTest(port=port):
                with contextlib.redirect_stderr(io.StringIO()):
                    with self.assertRaises(SystemExit):
                        mastermind_client.parse_args(["localhost", port])

    def test_missing_arguments(self) -> None:
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                mastermind_client.parse_args(["localhost"])


class TestReportOutcome(unittest.TestCase):
    """Tests for the exit status and messages of a finished game."""

    def _report(self, session: GameSession) -> tuple[int, str, str]:
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            status = mastermind_client.report_outcome(session)
        return status, out.getvalue(), err.getvalue()

    def test_won(self) -> None:
        status, out, _ = self._report(GameSession(round=12, phase=Phase.WON))
        self.assertEqual(status, 0)
        self.assertIn("Rounds: 12", out)

    def test_parity_error(self) -> None:
        session = GameSession(
            phase=Phase.PROTOCOL_ERROR, error=ArbiterError.PARITY,
        )
        status, _, err = self._report(session)
        self.assertEqual(status, 2)
        self.assertIn("Parity error", err)

    def test_game_lost(self) -> None:
        session = GameSession(phase=Phase.LOST, error=ArbiterError.GAME_LOST)
        status, _, err = self._report(session)
        self.assertEqual(status, 3)
        self.assertIn("Game lost", err)
        self.assertNotIn("Parity", err)

    def test_both_errors(self) -> None:
        session = GameSession(
            phase=Phase.PROTOCOL_ERROR,
            error=ArbiterError.PARITY | ArbiterError.GAME_LOST,
        )
        status, _, err = self._report(session)
        self.assertEqual(status, 4)
        self.assertIn("Parity error", err)
        self.assertIn("Game lost", err)

    def test_interrupted(self) -> None:
        status, _, err = self._report(GameSession(phase=Phase.ROUND_LOOP))
        self.assertEqual(status, 1)
        self.assertIn("Game unexpectedly interrupted", err)


class TestMain(unittest.TestCase):
    """End-to-end tests of the client entry point."""

    def _main(self, port: int) -> tuple[int, str, str]:
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            status = mastermind_client.main(
                ["127.0.0.1", str(port), "--timeout", "5"],
            )
        return status, out.getvalue(), err.getvalue()

    def test_win(self) -> None:
        with _arbiter_server() as server:
            status, out, _ = self._main(server.port)
        self.assertEqual(status, 0)
        self.assertIn("Rounds:", out)

    def test_parity_server(self) -> None:
        parity = bytes([ArbiterError.PARITY << 6])
        with _serve(lambda: (lambda request: parity)) as server:
            status, _, err = self._main(server.port)
        self.assertEqual(status, 2)
        self.assertIn("Parity error", err)

    def test_malformed_result_byte(self) -> None:
        with _serve(lambda: (lambda request: b"\x3f")) as server:
            status, _, err = self._main(server.port)
        self.assertEqual(status, 1)
        self.assertIn("Malformed result byte 0x3f", err)

    def test_server_hangs_up(self) -> None:
        with _serve(lambda: (lambda request: None)) as server:
            status, _, err = self._main(server.port)
        self.assertEqual(status, 1)
        self.assertIn("server", err.lower())

    def test_connection_refused(self) -> None:
        status, _, err = self._main(_unused_port())
        self.assertEqual(status, 1)
        self.assertIn("Cannot connect", err)

    def test_signal_handlers_restored(self) -> None:
        before = signal.getsignal(signal.SIGTERM)
        with _arbiter_server() as server:
            self._main(server.port)
        self.assertEqual(signal.getsignal(signal.SIGTERM), before)


class TestSignalHandling(unittest.TestCase):
    """Tests for the shutdown handler."""

    def test_signal_releases_and_exits(self) -> None:
        session = GameSession()
        session.candidates = code_breaker.CandidateList([Code.blank()])
        with _arbiter_server() as server:
            connection = mastermind_client.ArbiterConnection(
                "127.0.0.1", server.port, timeout=5,
            )
            connection.connect()
            previous = mastermind_client._install_signal_handlers(
                session, connection,
            )
            try:
                handler = signal.getsignal(signal.SIGTERM)
                with self.assertRaises(SystemExit) as cm:
                    handler(signal.SIGTERM, None)
            finally:
                for sig, old in previous.items():
                    if old is not None:
                        signal.signal(sig, old)
                connection.close()
        self.assertEqual(cm.exception.code, 0)
        self.assertTrue(session.released)
        self.assertIsNone(session.candidates)
        self.assertFalse(connection.is_connected)


if __name__ == "__main__":
    unittest.main()
