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

"""Client profile bundles

Packs an issued certificate, its optional key, the CA certificate and the
tls-crypt key into a zip with ready-to-use client configurations.
"""

import io
import re
import base64
import hashlib
import zipfile
from datetime import datetime, timezone

from vpncertd.api import format_time

CN_RE = re.compile(r"[A-Za-z0-9._-]{3,64}")

_CLIENT_HEADER = """client
dev tun
proto {proto}
remote {host} {port}
resolv-retry infinite
nobind
persist-key
persist-tun
cipher AES-256-GCM
auth SHA512
remote-cert-tls server
verb 3
key-direction 1
"""


class BundleError(Exception):
    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = errors


class BundleInputs:
    def __init__(
        self,
        cn,
        ca_pem,
        ta_key,
        cert_pem,
        key_pem="",
        remote_host="",
        remote_port=1194,
        proto="udp",
    ):
        self.cn = cn
        self.ca_pem = ca_pem
        self.ta_key = ta_key
        self.cert_pem = cert_pem
        self.key_pem = key_pem
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.proto = proto


def render_ref_config(inputs):
    """Client config referencing the files next to it in the bundle"""

    key_line = "key {cn}.key" if inputs.key_pem else "# key {cn}.key"
    return (
        _CLIENT_HEADER.format(
            proto=inputs.proto, host=inputs.remote_host, port=inputs.remote_port
        )
        + "\nca ca.crt\ncert {cn}.crt\ntls-crypt ta.key\n".format(cn=inputs.cn)
        + key_line.format(cn=inputs.cn)
        + "\n"
    )


def render_inline_config(inputs):
    """Self-contained client config with every PEM inlined"""

    if inputs.key_pem:
        key_section = "<key>\n{}\n</key>\n".format(inputs.key_pem.strip())
    else:
        key_section = (
            "# <key>\n"
            "# provide your private key or use file-referencing profile\n"
            "# </key>\n"
        )
    return (
        _CLIENT_HEADER.format(
            proto=inputs.proto, host=inputs.remote_host, port=inputs.remote_port
        )
        + "\n<ca>\n{ca}\n</ca>\n<cert>\n{cert}\n</cert>\n<tls-crypt>\n{ta}\n</tls-crypt>\n".format(
            ca=inputs.ca_pem.strip(),
            cert=inputs.cert_pem.strip(),
            ta=inputs.ta_key.strip(),
        )
        + key_section
    )


def render_meta(inputs, now=None):
    now = now or datetime.now(timezone.utc)
    digest = hashlib.sha256(inputs.ca_pem.encode("utf-8")).digest()
    return (
        "cn={cn}\n"
        "generated_at_utc={ts}\n"
        "proto={proto}\n"
        "remote={host}:{port}\n"
        "capem_sha256_b64={sha}\n"
    ).format(
        cn=inputs.cn,
        ts=format_time(now),
        proto=inputs.proto,
        host=inputs.remote_host,
        port=inputs.remote_port,
        sha=base64.b64encode(digest).decode("ascii"),
    )


def build_bundle(inputs):
    """
    Build a client bundle zip.

    Arguments: inputs - BundleInputs
    Returns:   The zip archive as bytes, every entry under "<cn>/"
    """

    if not isinstance(inputs.cn, str) or not CN_RE.fullmatch(inputs.cn):
        raise BundleError("invalid CN")
    try:
        port = int(inputs.remote_port)
    except (TypeError, ValueError) as e:
        raise BundleError("invalid remote port", errors=e)
    if not inputs.remote_host or port <= 0:
        raise BundleError("remote not set")
    if not inputs.proto:
        inputs.proto = "udp"

    cn = inputs.cn
    files = [
        ("ca.crt", inputs.ca_pem),
        ("ta.key", inputs.ta_key),
        (cn + ".crt", inputs.cert_pem),
    ]
    if inputs.key_pem:
        files.append((cn + ".key", inputs.key_pem))
    files.extend(
        [
            ("client.ovpn", render_ref_config(inputs)),
            ("client-inline.ovpn", render_inline_config(inputs)),
            (".bundle.meta", render_meta(inputs)),
        ]
    )

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in files:
            zf.writestr("{}/{}".format(cn, name), data)
    return buf.getvalue()
