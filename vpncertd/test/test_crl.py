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
import json
import pytest
from datetime import timedelta

from cryptography import x509

from vpncertd.crl import RevocationLedger, reason_flag
from vpncertd.errors import CRLNotFoundError, SigningError
from vpncertd.store import CAStore

from conftest import write_pki


def crl_serials(pem):
    crl = x509.load_pem_x509_crl(pem.encode("utf-8"))
    return {r.serial_number for r in crl}


def test_read_crl_before_any_revocation(ca):
    ledger = RevocationLedger(ca)
    with pytest.raises(CRLNotFoundError):
        ledger.read_crl()
    assert ledger.revoked_serials() == set()


def test_revoke_writes_signed_crl(ca):
    ledger = RevocationLedger(ca)
    pem = ledger.revoke("1000", "key-compromise")

    crl = x509.load_pem_x509_crl(pem.encode())
    assert crl.is_signature_valid(ca.cert.public_key())
    assert crl.issuer == ca.cert.subject
    assert crl.next_update_utc - crl.last_update_utc == timedelta(days=7)
    number = crl.extensions.get_extension_for_class(x509.CRLNumber).value.crl_number
    assert number == int(crl.last_update_utc.timestamp())

    revoked = crl.get_revoked_certificate_by_serial_number(1000)
    assert revoked is not None
    reason = revoked.extensions.get_extension_for_class(x509.CRLReason).value.reason
    assert reason is x509.ReasonFlags.key_compromise

    # persisted verbatim
    assert ledger.read_crl() == pem


def test_revoke_is_idempotent(ca):
    ledger = RevocationLedger(ca)
    first = ledger.revoke("1000", "key-compromise")
    second = ledger.revoke("1000", "superseded")

    assert crl_serials(first) == crl_serials(second) == {1000}
    with open(ledger.ledger_path) as fh:
        entries = json.load(fh)["entries"]
    assert len(entries) == 1
    # the first reason sticks
    assert entries[0]["reason"] == "key-compromise"


def test_crl_matches_ledger(ca):
    ledger = RevocationLedger(ca)
    for serial in ("1000", "1003", "1001", "1003"):
        ledger.revoke(serial, "superseded")

    assert ledger.revoked_serials() == {"1000", "1001", "1003"}
    assert crl_serials(ledger.read_crl()) == {int(s) for s in ledger.revoked_serials()}


def test_free_form_reason_has_no_reason_code(ca):
    ledger = RevocationLedger(ca)
    crl = x509.load_pem_x509_crl(ledger.revoke("1000", "lost laptop").encode())
    revoked = crl.get_revoked_certificate_by_serial_number(1000)
    with pytest.raises(x509.ExtensionNotFound):
        revoked.extensions.get_extension_for_class(x509.CRLReason)


def test_reason_flag():
    assert reason_flag("key-compromise") is x509.ReasonFlags.key_compromise
    assert reason_flag("keyCompromise") is x509.ReasonFlags.key_compromise
    assert reason_flag("CESSATION_OF_OPERATION") is x509.ReasonFlags.cessation_of_operation
    assert reason_flag("because") is None
    assert reason_flag("") is None


def test_rsa_ca_crl(tmp_path):
    pki = str(tmp_path / "pki")
    write_pki(pki, kind="rsa")
    ca = CAStore.load(pki, str(tmp_path / "state"))
    pem = RevocationLedger(ca).revoke("1234", "superseded")
    crl = x509.load_pem_x509_crl(pem.encode())
    assert crl.is_signature_valid(ca.cert.public_key())
    assert crl_serials(pem) == {1234}


def test_deploy(ca, tmp_path):
    ledger = RevocationLedger(ca)
    pem = ledger.revoke("1000", "superseded")
    target = str(tmp_path / "openvpn" / "crl.pem")
    ledger.deploy(target)
    with open(target) as fh:
        assert fh.read() == pem
    assert oct(os.stat(target).st_mode & 0o777) == "0o644"


def test_failed_signing_leaves_ledger_untouched(ca):
    ledger = RevocationLedger(ca)
    good = ledger.revoke("1000", "superseded")

    for bad in ("0", str(2 ** 160)):
        with pytest.raises(SigningError):
            ledger.revoke(bad, "superseded")

    assert ledger.revoked_serials() == {"1000"}
    assert ledger.read_crl() == good
    assert crl_serials(ledger.revoke("1001", "superseded")) == {1000, 1001}
