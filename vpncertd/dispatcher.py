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

import logging
from datetime import datetime, timezone

from vpncertd import signing, validate
from vpncertd.api import Op, Response, format_time
from vpncertd.crl import RevocationLedger
from vpncertd.errors import (
    BadRequestError,
    CertdError,
    ConflictError,
    InternalError,
)
from vpncertd.index import IssuanceIndex
from vpncertd.policy import Policy
from vpncertd.store import CAStore

log = logging.getLogger(__name__)

LIST_ISSUED_CAP = 200


class Certd:
    """Everything a request needs, built once at startup

    Holds the CA store, the issuance index, the revocation ledger, the
    policy and where to deploy CRLs. A Certd without a CA answers only
    HEALTH.
    """

    def __init__(self, ca=None, policy=None, crl_out=""):
        self.ca = ca
        self.policy = policy or Policy.default()
        self.crl_out = crl_out
        self.index = IssuanceIndex(ca) if ca else None
        self.ledger = RevocationLedger(ca) if ca else None

    @classmethod
    def load(cls, pki_dir, state_dir, policy_path="", crl_out=""):
        ca = CAStore.load(pki_dir, state_dir)
        return cls(ca=ca, policy=Policy.load(policy_path), crl_out=crl_out)

    def reload_policy(self, policy_path):
        """Swap in a freshly loaded policy

        Policy.load raises PolicyError on a bad file, in which case the
        current policy stays in place.
        """

        policy = Policy.load(policy_path)
        self.policy = policy
        log.info("policy reloaded: %r", policy)
        return policy

    def exists_active_cn(self, cn):
        return self.index.exists_active_cn(cn, self.ledger.revoked_serials())


class Dispatcher:
    """Turns one Request into one Response

    Every outcome is a Response: a payload on success, or err set to
    "<kind>: <message>" with no payload on failure.
    """

    def __init__(self, certd):
        self.certd = certd
        self._handlers = {
            Op.HEALTH: self._health,
            Op.SIGN: self._sign,
            Op.GENKEY_AND_SIGN: self._genkey_and_sign,
            Op.REVOKE: self._revoke,
            Op.GET_CRL: self._get_crl,
            Op.LIST_ISSUED: self._list_issued,
        }

    def handle(self, request):
        try:
            op = Op(request.op)
        except ValueError:
            return Response.failure(BadRequestError("unknown_op"))

        try:
            return self._handlers[op](request)
        except CertdError as e:
            if isinstance(e, InternalError):
                log.error("%s failed: %s", op.value, e, exc_info=e.errors is not None)
            else:
                log.info("%s rejected: %s", op.value, e)
            return Response.failure(e)
        except Exception as e:
            log.exception("%s failed", op.value)
            return Response.failure(InternalError(str(e) or type(e).__name__))

    def _require_ca(self):
        if self.certd.ca is None:
            raise InternalError("ca_not_loaded")
        return self.certd.ca

    def _check_cn(self, cn):
        validate.cn(cn)
        if not self.certd.policy.matches_cn(cn):
            raise BadRequestError("cn_policy_violation")

    def _check_not_active(self, *cns):
        """Caller must hold the CA writer lock"""

        if self.certd.policy.allow_duplicate_cn:
            return
        revoked = self.certd.ledger.revoked_serials()
        for cn in set(cns):
            if self.certd.index.exists_active_cn(cn, revoked):
                raise ConflictError("active certificate exists for {}".format(cn))

    def _issued_response(self, result, with_key=False):
        return Response(
            cert_pem=result.cert_pem,
            key_pem_encrypted=result.key_pem if with_key else "",
            not_after=format_time(result.not_after),
            serial=result.serial,
        )

    def _health(self, request):
        return Response(serial="ok", not_after=format_time(datetime.now(timezone.utc)))

    def _sign(self, request):
        ca = self._require_ca()
        self._check_cn(request.cn)
        validate.profile(request.profile)
        validate.csr(request.csr_pem)

        csr = signing.load_csr(request.csr_pem)
        subject_cn = signing.csr_common_name(csr)
        if not subject_cn:
            raise BadRequestError("invalid_subject_no_cn")
        self._check_cn(subject_cn)

        days = self.certd.policy.validity_days(request.profile)
        with ca.lock:
            self._check_not_active(request.cn, subject_cn)
            result = signing.sign_csr(ca, request.csr_pem, request.profile, days, csr=csr)
            self.certd.index.append(
                subject_cn, request.profile, result.serial, result.not_after, result.cert_pem
            )
        return self._issued_response(result)

    def _genkey_and_sign(self, request):
        ca = self._require_ca()
        self._check_cn(request.cn)
        validate.profile(request.profile)
        validate.key_type(request.key_type)
        validate.passphrase(request.passphrase)

        # unlocked pre-check, repeated under the lock below
        if not self.certd.policy.allow_duplicate_cn and self.certd.exists_active_cn(request.cn):
            raise ConflictError("active certificate exists for {}".format(request.cn))

        key = signing.generate_private_key(request.key_type)
        days = self.certd.policy.validity_days(request.profile)
        with ca.lock:
            self._check_not_active(request.cn)
            result = signing.sign_key(
                ca, key, request.cn, request.profile, days, request.passphrase
            )
            self.certd.index.append(
                request.cn, request.profile, result.serial, result.not_after, result.cert_pem
            )
        return self._issued_response(result, with_key=True)

    def _revoke(self, request):
        self._require_ca()
        validate.serial(request.serial)
        validate.reason(request.reason)

        crl_pem = self.certd.ledger.revoke(request.serial, request.reason)
        if self.certd.crl_out:
            try:
                self.certd.ledger.deploy(self.certd.crl_out)
            except (OSError, CertdError) as e:
                log.warning("crl deploy to %s failed: %s", self.certd.crl_out, e)
        return Response(crl_pem=crl_pem)

    def _get_crl(self, request):
        self._require_ca()
        return Response(crl_pem=self.certd.ledger.read_crl())

    def _list_issued(self, request):
        self._require_ca()
        return Response(issued=self.certd.index.list(LIST_ISSUED_CAP))
