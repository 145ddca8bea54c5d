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

import json
import hashlib
import logging
from datetime import datetime, timezone

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from vpncertd.api import IssuedMeta, format_time, parse_time
from vpncertd.store import open_state_file

log = logging.getLogger(__name__)

ISSUED_FILE = "issued.jsonl"


class IssuanceIndex:
    """Append-only log of every certificate the CA has issued

    One JSON record per line. Lines are only ever appended; readers skip
    lines they can't parse, so a torn trailing write costs one record at
    most.
    """

    def __init__(self, ca):
        self.ca = ca
        self.path = ca.state_path(ISSUED_FILE)

    def append(self, cn, profile, serial, not_after, cert_pem):
        """Record an issued certificate

        Arguments: cn        - subject common name
                   profile   - client or server
                   serial    - decimal serial string
                   not_after - expiry datetime or RFC-3339 string
                   cert_pem  - the issued certificate
        """

        if isinstance(cert_pem, str):
            cert_pem = cert_pem.encode("utf-8")
        cert = x509.load_pem_x509_certificate(cert_pem)
        der = cert.public_bytes(serialization.Encoding.DER)
        if isinstance(not_after, datetime):
            not_after = format_time(not_after)

        meta = IssuedMeta(
            serial=str(serial),
            cn=cn,
            profile=getattr(profile, "value", profile),
            not_after=not_after,
            sha256=hashlib.sha256(der).hexdigest(),
        )
        line = json.dumps(meta.to_dict()) + "\n"
        with self.ca.lock:
            with open_state_file(self.path, "a") as fh:
                fh.write(line)
        return meta

    def list(self, max_count=0):
        """Issued records, oldest first, trimmed to the last max_count"""

        records = []
        try:
            with open_state_file(self.path, "r") as fh:
                for line in fh:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(IssuedMeta.from_dict(json.loads(line)))
                    except (ValueError, KeyError, TypeError):
                        log.debug("skipping malformed issuance line")
                        continue
        except FileNotFoundError:
            return []

        if max_count > 0 and len(records) > max_count:
            records = records[-max_count:]
        return records

    def exists_active_cn(self, cn, revoked_serials=()):
        """Is there an unexpired, unrevoked certificate for cn"""

        now = datetime.now(timezone.utc)
        revoked = set(revoked_serials)
        for meta in self.list():
            if meta.cn != cn or meta.serial in revoked:
                continue
            try:
                not_after = parse_time(meta.not_after)
            except ValueError:
                continue
            if not_after > now:
                return True
        return False
