###############################################################################
# Copyright (c) 2018, Lawrence Livermore National Security, LLC
# Produced at the Lawrence Livermore National Laboratory
# Written by Thomas Mendoza mendoza33@llnl.gov
# LLNL-CODE-754897
# All rights reserved
#
# This file is part of vpncertd, derived from Certipy:
# https://github.com/LLNL/certipy
#
# SPDX-License-Identifier: BSD-3-Clause
###############################################################################

"""Threaded UNIX-socket server speaking one JSON line each way

Each connection gets its own thread and carries exactly one exchange:
read a request line, hand it to the handler, write the response line,
close. One deadline covers both the read and the write.
"""

import os
import time
import socket
import logging
import threading
import socketserver
from contextlib import contextmanager

from vpncertd.api import Response, decode_request, encode_response
from vpncertd.errors import BadRequestError, CertdError, InternalError

log = logging.getLogger(__name__)

MAX_REQUEST_LINE = 512 * 1024
DEFAULT_DEADLINE = 30
DEFAULT_GRACE = 5
SOCKET_PERM = 0o600
SOCKET_DIR_PERM = 0o700


def ensure_socket_dir(socket_path):
    """Create the socket's directory and restrict it to the owner"""

    containing_dir = os.path.dirname(os.path.abspath(socket_path))
    os.makedirs(containing_dir, mode=SOCKET_DIR_PERM, exist_ok=True)
    os.chmod(containing_dir, SOCKET_DIR_PERM)


class DeadlineExceeded(Exception):
    pass


class _ConnectionHandler(socketserver.StreamRequestHandler):
    def setup(self):
        super().setup()
        self.deadline = time.monotonic() + self.server.deadline

    def _arm(self):
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise DeadlineExceeded()
        self.connection.settimeout(remaining)

    def handle(self):
        with self.server.track():
            try:
                self._exchange()
            except (DeadlineExceeded, socket.timeout):
                log.warning("connection aborted: deadline exceeded")
            except OSError as e:
                log.debug("connection error: %s", e)

    def _exchange(self):
        self._arm()
        line = self.rfile.readline(MAX_REQUEST_LINE + 1)
        if not line:
            return

        if len(line) > MAX_REQUEST_LINE:
            response = Response.failure(BadRequestError("request too large"))
        else:
            try:
                request = decode_request(line)
            except CertdError as e:
                response = Response.failure(e)
            else:
                response = self._dispatch(request)

        self._arm()
        self.wfile.write(encode_response(response))

    def _dispatch(self, request):
        try:
            return self.server.handler.handle(request)
        except Exception as e:
            log.exception("handler failed for %s", request.op)
            return Response.failure(InternalError(str(e) or type(e).__name__))


class UnixJSONServer(socketserver.ThreadingMixIn, socketserver.UnixStreamServer):
    """Serve a handler over a local socket

    The handler is any object with handle(request) -> Response.
    """

    daemon_threads = True
    block_on_close = False

    def __init__(
        self, socket_path, handler, deadline=DEFAULT_DEADLINE, grace=DEFAULT_GRACE
    ):
        if not socket_path or handler is None:
            raise ValueError("server not configured")
        self.socket_path = socket_path
        self.handler = handler
        self.deadline = deadline
        self.grace = grace
        self._in_flight = 0
        self._done = threading.Condition()
        self._thread = None

        try:
            os.remove(socket_path)
        except FileNotFoundError:
            pass
        super().__init__(socket_path, _ConnectionHandler)
        try:
            os.chmod(socket_path, SOCKET_PERM)
        except OSError:
            self.server_close()
            raise
        log.info("listening", extra={"socket": socket_path})

    @property
    def in_flight_count(self):
        with self._done:
            return self._in_flight

    @contextmanager
    def track(self):
        with self._done:
            self._in_flight += 1
        try:
            yield
        finally:
            with self._done:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._done.notify_all()

    def start(self):
        """Accept connections on a background thread"""

        self._thread = threading.Thread(
            target=self.serve_forever, name="vpncertd-accept", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self, grace=None):
        """Stop accepting, close the socket and wait for in-flight work

        Returns True when every connection finished within the grace
        period.
        """

        grace = self.grace if grace is None else grace
        if self._thread is not None:
            self.shutdown()
            self._thread.join()
            self._thread = None
        self.server_close()
        try:
            os.remove(self.socket_path)
        except FileNotFoundError:
            pass

        deadline = time.monotonic() + grace
        with self._done:
            while self._in_flight > 0:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    log.warning(
                        "shutdown grace expired with %d connections in flight",
                        self._in_flight,
                    )
                    return False
                self._done.wait(timeout=remaining)
        log.info("stopped")
        return True
