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

"""Stateless input checks

Each check returns None when the input is acceptable and raises
BadRequestError carrying a short, stable code otherwise.
"""

import re

from vpncertd.api import KeyType, Profile
from vpncertd.errors import BadRequestError

CN_RE = re.compile(r"[A-Za-z0-9._-]{3,64}")
SERIAL_RE = re.compile(r"[0-9]+")
PEM_HEADER_RE = re.compile(r"-----BEGIN ([A-Z0-9 ]+)-----")

MAX_CSR_SIZE_PEM = 64 * 1024
MIN_PASS_LEN = 10
MAX_PASS_LEN = 128
# RFC 5280 serials are positive and at most 20 octets
MAX_SERIAL = 2 ** 159


def cn(value):
    if not isinstance(value, str) or not CN_RE.fullmatch(value):
        raise BadRequestError("invalid_cn")


def profile(value):
    try:
        Profile(value)
    except ValueError:
        raise BadRequestError("invalid_profile")


def key_type(value):
    try:
        KeyType(value)
    except ValueError:
        raise BadRequestError("invalid_key_type")


def passphrase(value):
    if len(value) < MIN_PASS_LEN or len(value) > MAX_PASS_LEN:
        raise BadRequestError("invalid_passphrase_length")
    if "\n" in value:
        raise BadRequestError("invalid_passphrase_newline")


def pem_type(data):
    """Return the type tag of the first PEM block in data, or None"""

    match = PEM_HEADER_RE.search(data)
    if not match:
        return None
    end = "-----END {}-----".format(match.group(1))
    if end not in data[match.end():]:
        return None
    return match.group(1)


def csr(value):
    # bound applies to encoded bytes
    if not value or len(value.encode("utf-8")) > MAX_CSR_SIZE_PEM:
        raise BadRequestError("invalid_csr_size")
    tag = pem_type(value)
    if tag is None or "CERTIFICATE REQUEST" not in tag:
        raise BadRequestError("invalid_csr_pem")


def serial(value):
    if not value or not SERIAL_RE.fullmatch(value):
        raise BadRequestError("invalid_serial")
    if not 1 <= int(value) < MAX_SERIAL:
        raise BadRequestError("invalid_serial")


def reason(value):
    if not value or not value.strip():
        raise BadRequestError("missing_reason")


def subject_cn(subject):
    """Check the CN of an OpenSSL style subject such as "/O=acme/CN=foo" """

    cn(parse_cn_only(subject))


def parse_cn_only(subject):
    s = subject.strip()
    if not s:
        return ""
    for part in s.lstrip("/").split("/"):
        key, sep, value = part.partition("=")
        if sep and key.strip().upper() == "CN":
            return value.strip()
    raise BadRequestError("invalid_subject_no_cn")
