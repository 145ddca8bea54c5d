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

"""Revocation ledger and CRL generation

The ledger (revoked.json) is the source of truth; the CRL (crl.pem) is
rebuilt from the whole ledger on every revocation and never patched.
"""

import json
import time
import logging
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from vpncertd.errors import CRLNotFoundError, SigningError
from vpncertd.store import atomic_write, open_state_file

log = logging.getLogger(__name__)

REVOKED_FILE = "revoked.json"
CRL_FILE = "crl.pem"
CRL_VALIDITY = timedelta(days=7)

# accepted spellings for reasons that have an RFC 5280 reason code
_REASON_FLAGS = {
    "unspecified": x509.ReasonFlags.unspecified,
    "key-compromise": x509.ReasonFlags.key_compromise,
    "ca-compromise": x509.ReasonFlags.ca_compromise,
    "affiliation-changed": x509.ReasonFlags.affiliation_changed,
    "superseded": x509.ReasonFlags.superseded,
    "cessation-of-operation": x509.ReasonFlags.cessation_of_operation,
    "certificate-hold": x509.ReasonFlags.certificate_hold,
    "privilege-withdrawn": x509.ReasonFlags.privilege_withdrawn,
    "aa-compromise": x509.ReasonFlags.aa_compromise,
}


def reason_flag(reason):
    """Map a free-form reason to a ReasonFlags value, or None"""

    key = (reason or "").strip().lower().replace("_", "-")
    for flag in x509.ReasonFlags:
        if key == flag.value.lower():
            return flag
    return _REASON_FLAGS.get(key)


class RevokedEntry:
    def __init__(self, serial, reason, revoked_at_unix):
        self.serial = serial
        self.reason = reason
        self.revoked_at_unix = revoked_at_unix

    def to_dict(self):
        return {
            "serial": self.serial,
            "reason": self.reason,
            "revoked_at_unix": self.revoked_at_unix,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(str(data["serial"]), data.get("reason", ""), int(data["revoked_at_unix"]))


class RevocationLedger:
    """Tracks revoked serials and keeps the signed CRL in step with them"""

    def __init__(self, ca):
        self.ca = ca
        self.ledger_path = ca.state_path(REVOKED_FILE)
        self.crl_path = ca.state_path(CRL_FILE)

    def load(self):
        """Read the ledger entries, an absent ledger is empty"""

        try:
            with open_state_file(self.ledger_path, "r") as fh:
                data = json.loads(fh.read() or "{}")
        except FileNotFoundError:
            return []
        return [RevokedEntry.from_dict(e) for e in data.get("entries") or []]

    def save(self, entries):
        data = {"entries": [e.to_dict() for e in entries]}
        atomic_write(self.ledger_path, json.dumps(data, indent=2))

    def revoked_serials(self):
        return {e.serial for e in self.load()}

    def revoke(self, serial, reason):
        """
        Revoke a serial and regenerate the CRL.

        Revoking a serial that is already in the ledger leaves the ledger
        untouched but still produces a fresh CRL.

        Arguments: serial - decimal serial string
                   reason - free-form reason, kept in the ledger
        Returns:   The new CRL as a PEM string
        """

        serial = str(int(serial))
        with self.ca.lock:
            entries = self.load()
            if any(e.serial == serial for e in entries):
                log.info("serial %s already revoked", serial)
                return self._write_crl(self._build_crl(entries), entries)

            entries.append(RevokedEntry(serial, reason, int(time.time())))
            # the ledger only gains entries a CRL can be signed for
            pem = self._build_crl(entries)
            self.save(entries)
            log.info("revoked serial %s (%s)", serial, reason)
            return self._write_crl(pem, entries)

    def _build_crl(self, entries):
        """Sign a CRL covering entries and return it as PEM, writing nothing"""

        now = datetime.now(timezone.utc).replace(microsecond=0)
        issuer = self.ca.cert
        builder = (
            x509.CertificateRevocationListBuilder()
            .issuer_name(issuer.subject)
            .last_update(now)
            .next_update(now + CRL_VALIDITY)
            .add_extension(x509.CRLNumber(int(now.timestamp())), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(
                    self.ca.key.public_key()
                ),
                critical=False,
            )
        )

        try:
            for entry in entries:
                builder = builder.add_revoked_certificate(self._revoked_entry(entry))
            crl = builder.sign(
                self.ca.key.key, algorithm=self.ca.key.hash_algorithm(issuer)
            )
        except (ValueError, TypeError) as e:
            raise SigningError("create crl: {}".format(e), errors=e)
        return crl.public_bytes(serialization.Encoding.PEM).decode("utf-8")

    @staticmethod
    def _revoked_entry(entry):
        revoked = (
            x509.RevokedCertificateBuilder()
            .serial_number(int(entry.serial))
            .revocation_date(
                datetime.fromtimestamp(entry.revoked_at_unix, tz=timezone.utc)
            )
        )
        flag = reason_flag(entry.reason)
        if flag is not None and flag is not x509.ReasonFlags.remove_from_crl:
            revoked = revoked.add_extension(x509.CRLReason(flag), critical=False)
        return revoked.build()

    def _write_crl(self, pem, entries):
        atomic_write(self.crl_path, pem)
        log.info("CRL rebuilt: %d revoked certificates", len(entries))
        return pem

    def read_crl(self):
        """Return the last written CRL verbatim"""

        try:
            with open_state_file(self.crl_path, "r") as fh:
                return fh.read()
        except FileNotFoundError as e:
            raise CRLNotFoundError("no CRL has been generated yet", errors=e)

    def deploy(self, path):
        """Copy the current CRL to where the VPN server reads it"""

        atomic_write(path, self.read_crl(), private=False)
        log.info("deployed CRL to %s", path)
