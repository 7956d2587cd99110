#!/usr/bin/env python3
"""
Sandboxed Static File Server Using Socket Programming

Serves files from a single configured root directory, one connection at a
time, and refuses any request that would read outside that root:
- One-line request parsing (``<METHOD> <PATH>``, extra tokens ignored)
- Path sandboxing against the canonical (symlink-resolved) root
- Byte-capped file streaming with silent truncation
- Header-less HTTP/1.0 status lines
- Logging to console and logs/server.log

Python Version: 3.8+
"""

import enum
import logging
import os
import signal
import socket
import sys
from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple, Union


HOST = "127.0.0.1"
PORT = 8080
DEFAULT_DOCUMENT = "index.html"
MAX_DOWNLOAD_BYTES = 10000
MAX_REQUEST_LINE = 8192
READ_CHUNK_SIZE = 4096
ROOT_ENV_VAR = "SIMPLE_WEB_ROOT"

logger = logging.getLogger("SimpleWebServer")


class ResponseStatus(enum.Enum):
    """Every status the server can put on the wire."""

    OK = b"HTTP/1.0 200 OK"
    BAD_REQUEST = b"HTTP/1.0 400 Bad Request"
    NOT_FOUND = b"HTTP/1.0 404 Not Found"
    NOT_IMPLEMENTED = b"HTTP/1.0 501 Not Implemented"

    @property
    def status_line(self) -> bytes:
        return self.value + b"\n\n"


class ParseError(enum.Enum):
    MALFORMED = "malformed"


class PathError(enum.Enum):
    OUTSIDE_ROOT = "outside_root"


class ServeResult(enum.Enum):
    SERVED = "served"
    TRUNCATED = "truncated"
    NOT_FOUND = "not_found"


class ConnectionState(enum.Enum):
    INIT = "init"
    PARSED = "parsed"
    DISPATCHED = "dispatched"
    SERVED = "served"
    ERRORED = "errored"
    CLOSED = "closed"


@dataclass(frozen=True)
class Request:
    """First two tokens of a request line."""
    method: str
    raw_path: str


@dataclass(frozen=True)
class ResolvedPath:
    """A filesystem path already proven to lie inside the root."""
    absolute_path: str


def parse_request(line: Optional[str]) -> Union[Request, ParseError]:
    """
    Split a request line into method and path.

    Args:
        line: Request line without its terminator, or None at end of stream

    Returns:
        Request on success, ParseError.MALFORMED if fewer than two tokens
    """
    if line is None:
        return ParseError.MALFORMED

    tokens = line.split()
    if len(tokens) < 2:
        return ParseError.MALFORMED

    return Request(method=tokens[0], raw_path=tokens[1])


class PathSandbox:
    """
    Resolves client-supplied paths against a fixed root directory.

    Dropping ``.`` and ``..`` segments only defeats textual traversal; a
    symlink inside the root can still point anywhere. The containment check
    therefore runs on the canonical form of both the candidate and the root.
    """

    def __init__(self, root: str, default_document: str = DEFAULT_DOCUMENT):
        self.root = os.path.abspath(root)
        self.default_document = default_document

    def resolve(self, raw_path: str) -> Union[ResolvedPath, PathError]:
        """
        Map a request path onto a file inside the root.

        Args:
            raw_path: Path token from the request line

        Returns:
            ResolvedPath if the canonical target is the root or below it,
            PathError.OUTSIDE_ROOT otherwise (including missing targets)
        """
        if "\x00" in raw_path:
            logger.warning(f"Rejected path with NUL byte: {raw_path!r}")
            return PathError.OUTSIDE_ROOT

        pathname = raw_path[1:] if raw_path.startswith("/") else raw_path
        if pathname == "":
            pathname = self.default_document

        segments = [s for s in pathname.split("/") if s not in (".", "..")]
        candidate = os.path.join(self.root, *segments)

        canonical_root = os.path.realpath(self.root)
        canonical = os.path.realpath(candidate)

        if not self.is_under_root(canonical, canonical_root):
            logger.warning(f"Rejected path outside root: {raw_path} -> {canonical}")
            return PathError.OUTSIDE_ROOT

        if not os.path.exists(canonical):
            logger.info(f"File not found: {raw_path} -> {canonical}")
            return PathError.OUTSIDE_ROOT

        logger.info(f"Resolved pathname: {raw_path} -> {canonical}")
        return ResolvedPath(absolute_path=canonical)

    @staticmethod
    def is_under_root(path: str, root: str) -> bool:
        """Return True if canonical ``path`` is ``root`` or a descendant of it."""
        if path == root:
            return True
        # os.path.join adds the separator only when root lacks one (e.g. "/")
        return path.startswith(os.path.join(root, ""))


def write_status(sink: BinaryIO, status: ResponseStatus) -> None:
    """
    Write a status line with no headers.

    Args:
        sink: Binary output stream of the connection
        status: Status to send
    """
    sink.write(status.status_line)


def write_body(sink: BinaryIO, data: bytes) -> None:
    """
    Append raw body bytes after the status line.

    Args:
        sink: Binary output stream of the connection
        data: File bytes to send
    """
    sink.write(data)


class FileStreamer:
    """Copies a resolved file to the client, capped at ``max_bytes``."""

    def __init__(self, max_bytes: int = MAX_DOWNLOAD_BYTES, chunk_size: int = READ_CHUNK_SIZE):
        if max_bytes < 0:
            raise ValueError(f"max_bytes must be non-negative, got {max_bytes}")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.max_bytes = max_bytes
        self.chunk_size = chunk_size

    def serve(self, resolved: ResolvedPath, sink: BinaryIO) -> ServeResult:
        """
        Stream a file preceded by the OK status line.

        Args:
            resolved: Path inside the root
            sink: Binary output stream of the connection

        Returns:
            ServeResult.NOT_FOUND if the file cannot be opened or read (nothing
            is written), otherwise SERVED or TRUNCATED
        """
        try:
            f = open(resolved.absolute_path, "rb")
        except OSError as e:
            logger.info(f"Cannot open {resolved.absolute_path}: {e}")
            return ServeResult.NOT_FOUND

        with f:
            try:
                chunk = f.read(min(self.chunk_size, self.max_bytes))
            except OSError as e:
                logger.info(f"Cannot read {resolved.absolute_path}: {e}")
                return ServeResult.NOT_FOUND

            write_status(sink, ResponseStatus.OK)

            sent = 0
            while chunk and sent < self.max_bytes:
                write_body(sink, chunk)
                sent += len(chunk)
                chunk = f.read(min(self.chunk_size, self.max_bytes - sent))

            # Cap reached with data still pending in the file
            if sent >= self.max_bytes and f.read(1):
                logger.info(f"Truncated {resolved.absolute_path} at {sent} bytes")
                return ServeResult.TRUNCATED

        logger.info(f"Served {resolved.absolute_path} ({sent} bytes)")
        return ServeResult.SERVED


class ConnectionHandler:
    """
    Runs one connection through parse, dispatch, serve and close.

    The handler owns both streams it is given and always closes them,
    whatever branch the request takes.
    """

    def __init__(self, root: str, max_bytes: int = MAX_DOWNLOAD_BYTES,
                 default_document: str = DEFAULT_DOCUMENT):
        self.sandbox = PathSandbox(root, default_document)
        self.streamer = FileStreamer(max_bytes)
        self.state = ConnectionState.INIT

    def handle(self, rfile: BinaryIO, wfile: BinaryIO,
               client_address: Optional[Tuple[str, int]] = None) -> Optional[ResponseStatus]:
        """
        Process a single request and close the connection streams.

        Args:
            rfile: Binary input stream to read the request line from
            wfile: Binary output stream for the response
            client_address: Peer address, used only for logging

        Returns:
            The status sent to the client, or None if the transport failed
            before a status could be written
        """
        self.state = ConnectionState.INIT
        peer = f"{client_address[0]}:{client_address[1]}" if client_address else "-"

        try:
            status = self._process(rfile, wfile)
            wfile.flush()
            logger.info(f"[{peer}] Response: {status.value.decode('ascii')}")
            return status
        except OSError as e:
            logger.error(f"[{peer}] Connection error: {e}")
            self.state = ConnectionState.ERRORED
            return None
        finally:
            for stream in (wfile, rfile):
                try:
                    stream.close()
                except OSError as e:
                    logger.error(f"[{peer}] Error closing stream: {e}")
            self.state = ConnectionState.CLOSED

    def _process(self, rfile: BinaryIO, wfile: BinaryIO) -> ResponseStatus:
        request = parse_request(self._read_request_line(rfile))
        if request is ParseError.MALFORMED:
            logger.warning("Malformed request line")
            return self._fail(wfile, ResponseStatus.BAD_REQUEST)

        self.state = ConnectionState.PARSED
        logger.info(f"command: {request.method}")
        logger.info(f"pathname: {request.raw_path}")

        if request.method != "GET":
            return self._fail(wfile, ResponseStatus.NOT_IMPLEMENTED)

        self.state = ConnectionState.DISPATCHED
        resolved = self.sandbox.resolve(request.raw_path)
        if resolved is PathError.OUTSIDE_ROOT:
            return self._fail(wfile, ResponseStatus.NOT_FOUND)

        if self.streamer.serve(resolved, wfile) is ServeResult.NOT_FOUND:
            return self._fail(wfile, ResponseStatus.NOT_FOUND)

        self.state = ConnectionState.SERVED
        return ResponseStatus.OK

    def _fail(self, wfile: BinaryIO, status: ResponseStatus) -> ResponseStatus:
        self.state = ConnectionState.ERRORED
        write_status(wfile, status)
        return status

    @staticmethod
    def _read_request_line(rfile: BinaryIO) -> Optional[str]:
        raw = rfile.readline(MAX_REQUEST_LINE)
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")


class WebServer:
    """
    Sequential TCP listener: accepts one connection, serves it to
    completion, then accepts the next.
    """

    def __init__(self, host: str = HOST, port: int = PORT, root: str = ".",
                 max_bytes: int = MAX_DOWNLOAD_BYTES):
        """
        Bind and listen on the server socket.

        Args:
            host: Server host address (default: 127.0.0.1)
            port: Server port number, 0 for an ephemeral port (default: 8080)
            root: Directory all served files must resolve under
            max_bytes: Maximum body bytes per response (default: 10000)
        """
        if max_bytes < 0:
            raise ValueError(f"max_bytes must be non-negative, got {max_bytes}")

        self.root = os.path.abspath(root)
        self.max_bytes = max_bytes
        self.running = False
        self.total_connections = 0

        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self.server_socket.bind((host, port))
            self.server_socket.listen(5)
        except OSError:
            self.server_socket.close()
            raise

        self.host, self.port = self.server_socket.getsockname()[:2]
        logger.info(f"Server bound to {self.host}:{self.port}, root={self.root}, max_bytes={max_bytes}")

    def serve_forever(self):
        """Run the accept loop until stop() is called."""
        if self.server_socket.fileno() == -1:
            logger.warning("serve_forever() called on a stopped server")
            return

        self.running = True
        logger.info("Server ready to accept connections...")

        while self.running:
            try:
                self.handle_next()
            except OSError as e:
                if self.running:
                    logger.error(f"Error accepting connection: {e}")
                break

        self.stop()

    def handle_next(self) -> Optional[ResponseStatus]:
        """Accept one connection and process it end-to-end."""
        client_socket, client_address = self.server_socket.accept()
        self.total_connections += 1
        logger.info(f"New connection from {client_address[0]}:{client_address[1]}")

        with client_socket:
            handler = ConnectionHandler(self.root, self.max_bytes)
            return handler.handle(client_socket.makefile("rb"), client_socket.makefile("wb"),
                                  client_address)

    def stop(self):
        """Close the listening socket; the accept loop exits on its next pass."""
        if self.server_socket.fileno() == -1:
            return

        logger.info("Stopping server...")
        self.running = False
        try:
            # shutdown wakes a thread blocked in accept() on Linux
            self.server_socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.server_socket.close()
        logger.info(f"Server stopped. Total connections: {self.total_connections}")


def setup_logging(log_dir: str = "logs") -> None:
    """Attach console and file handlers to the server logger."""
    os.makedirs(log_dir, exist_ok=True)

    log_format = "%(asctime)s [%(levelname)s] [%(threadName)s] %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    file_handler = logging.FileHandler(os.path.join(log_dir, "server.log"), mode='a')
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(log_format, date_format))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(log_format, date_format))

    logger.setLevel(logging.INFO)
    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    # Prevent duplicate logs
    logger.propagate = False


def main():
    """
    Main entry point for the file server.

    Usage: simple_web_server.py [port] [root] [host]
    Root falls back to $SIMPLE_WEB_ROOT, then the current directory.
    """
    host = HOST
    port = PORT
    root = os.environ.get(ROOT_ENV_VAR, ".")

    if len(sys.argv) >= 2:
        try:
            port = int(sys.argv[1])
        except ValueError:
            print("Error: Port must be an integer")
            sys.exit(1)

    if len(sys.argv) >= 3:
        root = sys.argv[2]

    if len(sys.argv) >= 4:
        host = sys.argv[3]

    if not (1 <= port <= 65535):
        print("Error: Port must be between 1 and 65535")
        sys.exit(1)

    if not os.path.isdir(root):
        print(f"Error: Root directory does not exist: {root}")
        sys.exit(1)

    setup_logging()

    try:
        server = WebServer(host, port, root)
    except OSError as e:
        print(f"Error starting server: {e}")
        sys.exit(1)

    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        server.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    print(f"Serving {server.root} on http://{server.host}:{server.port}")
    print("Press Ctrl+C to stop the server")
    server.serve_forever()


if __name__ == "__main__":
    main()
