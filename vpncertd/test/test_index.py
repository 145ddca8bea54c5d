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

import hashlib
import json
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from vpncertd.api import format_time
from vpncertd.index import IssuanceIndex
from vpncertd.signing import gen_key_and_sign


def issue(ca, index, cn, profile="client"):
    result = gen_key_and_sign(ca, cn, "ed25519", profile, 30, "long-enough-pass")
    index.append(cn, profile, result.serial, result.not_after, result.cert_pem)
    return result


def test_append_and_list(ca):
    index = IssuanceIndex(ca)
    assert index.list() == []

    first = issue(ca, index, "alpha-01")
    issue(ca, index, "bravo-01", profile="server")

    records = index.list()
    assert [r.cn for r in records] == ["alpha-01", "bravo-01"]
    assert [r.serial for r in records] == ["1000", "1001"]
    assert records[1].profile == "server"
    assert records[0].not_after == format_time(first.not_after)

    der = x509.load_pem_x509_certificate(first.cert_pem.encode()).public_bytes(
        serialization.Encoding.DER
    )
    assert records[0].sha256 == hashlib.sha256(der).hexdigest()


def test_list_trims_to_most_recent(ca):
    index = IssuanceIndex(ca)
    for i in range(5):
        issue(ca, index, "host-{:02d}".format(i))

    assert [r.cn for r in index.list(2)] == ["host-03", "host-04"]
    assert len(index.list(0)) == 5
    assert len(index.list(50)) == 5


def test_malformed_lines_skipped(ca):
    index = IssuanceIndex(ca)
    issue(ca, index, "alpha-01")
    with open(index.path, "a") as fh:
        fh.write("{not json\n")
        fh.write(json.dumps({"serial": "9"}) + "\n")
        fh.write("\n")
    issue(ca, index, "bravo-01")
    # torn trailing write
    with open(index.path, "a") as fh:
        fh.write('{"serial": "10')

    assert [r.cn for r in index.list()] == ["alpha-01", "bravo-01"]


def test_exists_active_cn(ca):
    index = IssuanceIndex(ca)
    assert not index.exists_active_cn("alpha-01")

    result = issue(ca, index, "alpha-01")
    assert index.exists_active_cn("alpha-01")
    assert not index.exists_active_cn("bravo-01")
    assert not index.exists_active_cn("alpha-01", revoked_serials={result.serial})


def test_expired_record_is_not_active(ca):
    index = IssuanceIndex(ca)
    result = issue(ca, index, "alpha-01")
    expired = {
        "serial": "999",
        "cn": "old-host",
        "profile": "client",
        "not_after": format_time(datetime.now(timezone.utc) - timedelta(days=1)),
        "sha256": "00",
    }
    with open(index.path, "a") as fh:
        fh.write(json.dumps(expired) + "\n")

    assert not index.exists_active_cn("old-host")
    assert index.exists_active_cn("alpha-01", revoked_serials={"999"})
    assert not index.exists_active_cn("alpha-01", revoked_serials={result.serial})
