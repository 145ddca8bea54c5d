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

import os
import sys
import json
import base64
import signal
import socket
import hashlib
import logging
import argparse
import threading

from vpncertd import __version__
from vpncertd.api import Request, decode_response, encode_request
from vpncertd.bundle import BundleError, BundleInputs, build_bundle
from vpncertd.config import (
    DEFAULT_SOCKET_PATH,
    ENV_SOCKET,
    READ_WRITE_DEADLINE,
    SHUTDOWN_TIMEOUT,
    getenv_default,
    load_config,
)
from vpncertd.dispatcher import Certd, Dispatcher
from vpncertd.errors import CertdError
from vpncertd.log import configure_logging
from vpncertd.server import UnixJSONServer, ensure_socket_dir

log = logging.getLogger("vpncertd")

DIAL_TIMEOUT = 3


def daemon_main(argv=None):
    cfg = load_config(argv)
    configure_logging(cfg.log_level)
    log.info("starting", extra={"version": __version__})

    try:
        ensure_socket_dir(cfg.socket_path)
    except OSError as e:
        log.error("socket_dir", extra={"err": str(e)})
        sys.exit(2)

    try:
        certd = Certd.load(
            cfg.pki_dir,
            cfg.state_dir,
            policy_path=cfg.policy_path,
            crl_out=cfg.crl_out_path,
        )
    except CertdError as e:
        log.error("load_ca", extra={"err": str(e)})
        sys.exit(2)

    try:
        server = UnixJSONServer(
            cfg.socket_path,
            Dispatcher(certd),
            deadline=READ_WRITE_DEADLINE,
            grace=SHUTDOWN_TIMEOUT,
        )
    except OSError as e:
        log.error("start_server", extra={"err": str(e)})
        sys.exit(2)

    stop = threading.Event()

    def on_term(signum, frame):
        stop.set()

    def on_hup(signum, frame):
        try:
            certd.reload_policy(cfg.policy_path)
        except CertdError as e:
            log.error("policy_reload", extra={"err": str(e)})

    signal.signal(signal.SIGTERM, on_term)
    signal.signal(signal.SIGINT, on_term)
    signal.signal(signal.SIGHUP, on_hup)

    server.start()
    while not stop.is_set():
        stop.wait(1)
    server.stop()


def ctl_main(argv=None):
    parser = argparse.ArgumentParser(
        prog="vpn-certctl", description="Send one request to vpn-certd."
    )
    parser.add_argument(
        "--socket",
        default=getenv_default(ENV_SOCKET, DEFAULT_SOCKET_PATH),
        help="unix socket",
    )
    parser.add_argument(
        "--op",
        default="HEALTH",
        help="op: HEALTH|SIGN|GENKEY_AND_SIGN|REVOKE|GET_CRL|LIST_ISSUED",
    )
    parser.add_argument("--cn", default="", help="common name")
    parser.add_argument("--profile", default="client", help="profile: client|server")
    parser.add_argument("--key-type", default="rsa4096", help="key type: rsa4096|ed25519")
    parser.add_argument("--passphrase", default="", help="passphrase (for GENKEY_AND_SIGN)")
    parser.add_argument("--csr", default="", help="PEM CSR (for SIGN)")
    parser.add_argument("--csr-file", default="", help="read the PEM CSR from a file")
    parser.add_argument("--serial", default="", help="serial (for REVOKE)")
    parser.add_argument("--reason", default="", help="reason (for REVOKE)")
    args = parser.parse_args(argv)

    csr_pem = args.csr
    if args.csr_file:
        with open(args.csr_file, "r") as fh:
            csr_pem = fh.read()

    request = Request(
        op=args.op,
        cn=args.cn,
        profile=args.profile,
        key_type=args.key_type,
        passphrase=args.passphrase,
        csr_pem=csr_pem,
        serial=args.serial,
        reason=args.reason,
    )

    try:
        response = send_request(args.socket, request)
    except (OSError, ValueError) as e:
        print("request:", e, file=sys.stderr)
        sys.exit(2)

    print(json.dumps(response.to_dict(), indent=2))
    if response.err:
        sys.exit(1)


def send_request(socket_path, request, timeout=DIAL_TIMEOUT):
    """Dial the daemon, send one request and read its single response"""

    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        sock.connect(socket_path)
        sock.settimeout(READ_WRITE_DEADLINE)
        sock.sendall(encode_request(request))
        with sock.makefile("rb") as fh:
            line = fh.readline()
    if not line:
        raise ValueError("connection closed without a response")
    return decode_response(line)


def bundle_main(argv=None):
    parser = argparse.ArgumentParser(
        prog="vpn-bundle", description="Build a client profile bundle."
    )
    parser.add_argument("--cn", required=True, help="Common Name")
    parser.add_argument("--ca", required=True, help="Path to ca.crt (PEM)")
    parser.add_argument("--ta", required=True, help="Path to ta.key (tls-crypt)")
    parser.add_argument("--cert", required=True, help="Path to client cert PEM")
    parser.add_argument("--key", default="", help="Path to client key PEM (optional)")
    parser.add_argument("--remote", default="vpn.example.com", help="remote host")
    parser.add_argument("--port", type=int, default=1194, help="remote port")
    parser.add_argument("--proto", default="udp", choices=["udp", "tcp"], help="proto")
    parser.add_argument(
        "--out", default="", help="Output zip path (default: ./dist/<cn>.zip)"
    )
    args = parser.parse_args(argv)

    def read(path):
        with open(path, "r") as fh:
            return fh.read()

    out = args.out
    if not out:
        os.makedirs("dist", mode=0o755, exist_ok=True)
        out = os.path.join("dist", args.cn + ".zip")

    try:
        inputs = BundleInputs(
            cn=args.cn,
            ca_pem=read(args.ca),
            ta_key=read(args.ta),
            cert_pem=read(args.cert),
            key_pem=read(args.key) if args.key else "",
            remote_host=args.remote,
            remote_port=args.port,
            proto=args.proto,
        )
        data = build_bundle(inputs)
        fd = os.open(out, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
    except (OSError, BundleError) as e:
        print("bundle:", e, file=sys.stderr)
        sys.exit(2)

    digest = base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")
    print("OK {}\nsize={}\nsha256_b64={}".format(out, len(data), digest))
