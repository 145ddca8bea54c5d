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

"""Wire types for the local socket protocol

A client writes one newline-terminated JSON object (a Request) and reads
back exactly one JSON object (a Response).
"""

import json
from datetime import datetime, timezone
from enum import Enum

from vpncertd.errors import BadRequestError


class Op(Enum):
    HEALTH = "HEALTH"
    SIGN = "SIGN"
    GENKEY_AND_SIGN = "GENKEY_AND_SIGN"
    REVOKE = "REVOKE"
    GET_CRL = "GET_CRL"
    LIST_ISSUED = "LIST_ISSUED"


class Profile(Enum):
    """Issuance role, decides key usage and default validity"""

    client = "client"
    server = "server"


class KeyType(Enum):
    """Key types the daemon will generate"""

    rsa4096 = "rsa4096"
    ed25519 = "ed25519"


REQUEST_FIELDS = (
    "op",
    "cn",
    "profile",
    "key_type",
    "passphrase",
    "csr_pem",
    "serial",
    "reason",
)

RESPONSE_FIELDS = (
    "cert_pem",
    "key_pem_encrypted",
    "crl_pem",
    "serial",
    "not_after",
    "issued",
    "err",
)


class Request:
    """A single client request, all fields are plain strings"""

    def __init__(
        self,
        op="",
        cn="",
        profile="",
        key_type="",
        passphrase="",
        csr_pem="",
        serial="",
        reason="",
    ):
        self.op = op
        self.cn = cn
        self.profile = profile
        self.key_type = key_type
        self.passphrase = passphrase
        self.csr_pem = csr_pem
        self.serial = serial
        self.reason = reason

    def __repr__(self):
        # never echo the passphrase
        return "Request(op={op!r}, cn={cn!r}, profile={profile!r}, serial={serial!r})".format(
            op=self.op, cn=self.cn, profile=self.profile, serial=self.serial
        )

    def to_dict(self):
        return {
            f: getattr(self, f) for f in REQUEST_FIELDS if getattr(self, f)
        }


class IssuedMeta:
    """One line of the issuance log"""

    def __init__(self, serial, cn, profile, not_after, sha256):
        self.serial = serial
        self.cn = cn
        self.profile = profile
        self.not_after = not_after
        self.sha256 = sha256

    def __eq__(self, other):
        if not isinstance(other, IssuedMeta):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return "IssuedMeta({serial!r}, {cn!r})".format(serial=self.serial, cn=self.cn)

    def to_dict(self):
        return {
            "serial": self.serial,
            "cn": self.cn,
            "profile": self.profile,
            "not_after": self.not_after,
            "sha256": self.sha256,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            serial=str(data["serial"]),
            cn=str(data["cn"]),
            profile=str(data["profile"]),
            not_after=str(data["not_after"]),
            sha256=str(data["sha256"]),
        )


class Response:
    """Either a success payload or an error, never both"""

    def __init__(
        self,
        cert_pem="",
        key_pem_encrypted="",
        crl_pem="",
        serial="",
        not_after="",
        issued=None,
        err="",
    ):
        self.cert_pem = cert_pem
        self.key_pem_encrypted = key_pem_encrypted
        self.crl_pem = crl_pem
        self.serial = serial
        self.not_after = not_after
        self.issued = issued
        self.err = err

    @classmethod
    def failure(cls, error):
        return cls(err=str(error))

    @property
    def ok(self):
        return not self.err

    def to_dict(self):
        data = {}
        for field in RESPONSE_FIELDS:
            value = getattr(self, field)
            if field == "issued":
                if value is not None:
                    data[field] = [meta.to_dict() for meta in value]
            elif value:
                data[field] = value
        return data

    @classmethod
    def from_dict(cls, data):
        issued = data.get("issued")
        if issued is not None:
            issued = [IssuedMeta.from_dict(d) for d in issued]
        kwargs = {f: data.get(f, "") for f in RESPONSE_FIELDS if f != "issued"}
        return cls(issued=issued, **kwargs)


def decode_request(line):
    """Strictly decode one request line

    Rejects anything that is not a JSON object, unknown fields, and
    non-string values.
    """

    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BadRequestError("request is not valid utf-8", errors=e)
    try:
        data = json.loads(line)
    except ValueError as e:
        raise BadRequestError("malformed json: {}".format(e), errors=e)

    if not isinstance(data, dict):
        raise BadRequestError("request must be a json object")

    unknown = sorted(set(data) - set(REQUEST_FIELDS))
    if unknown:
        raise BadRequestError(
            "unknown field {name!r}".format(name=unknown[0])
        )

    for key, value in data.items():
        if not isinstance(value, str):
            raise BadRequestError("field {key!r} must be a string".format(key=key))

    if not data.get("op"):
        raise BadRequestError("missing op")

    return Request(**data)


def encode_response(response):
    """Serialize a response as a single newline-terminated JSON line"""

    return (json.dumps(response.to_dict()) + "\n").encode("utf-8")


def encode_request(request):
    return (json.dumps(request.to_dict()) + "\n").encode("utf-8")


def decode_response(line):
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    return Response.from_dict(json.loads(line))


RFC3339 = "%Y-%m-%dT%H:%M:%SZ"


def format_time(dt):
    """RFC-3339 UTC with second precision, as used on the wire"""

    return dt.astimezone(timezone.utc).strftime(RFC3339)


def parse_time(value):
    return datetime.strptime(value, RFC3339).replace(tzinfo=timezone.utc)
