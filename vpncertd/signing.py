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

from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from vpncertd.api import KeyType, Profile
from vpncertd.errors import BadRequestError, SigningError
from vpncertd.store import CertTemplate


class SignResult:
    """Outcome of an issuance, key_pem is empty for CSR signing"""

    def __init__(self, cert_pem, key_pem, not_after, serial):
        self.cert_pem = cert_pem
        self.key_pem = key_pem
        self.not_after = not_after
        self.serial = serial

    def __repr__(self):
        return "SignResult(serial={!r}, not_after={})".format(
            self.serial, self.not_after.isoformat()
        )


def _key_usage(digital_signature=False, key_encipherment=False):
    return x509.KeyUsage(
        digital_signature=digital_signature,
        content_commitment=False,
        key_encipherment=key_encipherment,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=False,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    )


def build_client_template(cn, days):
    extensions = [
        (x509.BasicConstraints(ca=False, path_length=None), True),
        (_key_usage(digital_signature=True), True),
        (x509.ExtendedKeyUsage([x509.ExtendedKeyUsageOID.CLIENT_AUTH]), False),
    ]
    not_after = datetime.now(timezone.utc) + timedelta(days=days)
    return CertTemplate(cn, extensions=extensions, not_after=not_after)


def build_server_template(cn, days):
    extensions = [
        (x509.BasicConstraints(ca=False, path_length=None), True),
        (_key_usage(digital_signature=True, key_encipherment=True), True),
        (x509.ExtendedKeyUsage([x509.ExtendedKeyUsageOID.SERVER_AUTH]), False),
    ]
    not_after = datetime.now(timezone.utc) + timedelta(days=days)
    return CertTemplate(cn, extensions=extensions, not_after=not_after)


def build_template(cn, profile, days):
    try:
        profile = Profile(profile)
    except ValueError:
        raise BadRequestError("invalid_profile")
    if profile is Profile.client:
        return build_client_template(cn, days)
    return build_server_template(cn, days)


def generate_private_key(key_type):
    """
    Create a private key for a new end-entity certificate.

    Arguments: key_type - KeyType or its value, rsa4096 or ed25519
    Returns:   The cryptography private key object
    """
    try:
        key_type = KeyType(key_type)
    except ValueError:
        raise BadRequestError("invalid_key_type")
    if key_type is KeyType.rsa4096:
        return rsa.generate_private_key(public_exponent=65537, key_size=4096)
    return ed25519.Ed25519PrivateKey.generate()


def encrypt_private_key(key, passphrase):
    """PKCS#8 PEM of key, encrypted under passphrase"""

    if not passphrase:
        raise SigningError("empty passphrase")
    try:
        return key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(
                passphrase.encode("utf-8")
            ),
        ).decode("utf-8")
    except (ValueError, TypeError) as e:
        raise SigningError("encrypt key: {}".format(e), errors=e)


def sign_key(ca, key, cn, profile, days, passphrase):
    """Issue a certificate for an already generated key

    An empty passphrase fails before a serial is allocated.
    """
    if not passphrase:
        raise SigningError("empty passphrase")
    template = build_template(cn, profile, days)
    cert_pem, serial = ca.sign(template, key.public_key())
    key_pem = encrypt_private_key(key, passphrase)
    return SignResult(cert_pem, key_pem, template.not_after, str(serial))


def gen_key_and_sign(ca, cn, key_type, profile, days, passphrase):
    """
    Generate a keypair and issue a certificate for it in one step.

    The private key only ever exists in the returned SignResult, encrypted
    with the passphrase; it is never written to disk.

    Arguments: ca         - CAStore that signs
               cn         - subject common name
               key_type   - rsa4096 or ed25519
               profile    - client or server
               days       - validity in days
               passphrase - key encryption passphrase
    Returns:   SignResult
    """
    if not passphrase:
        raise SigningError("empty passphrase")
    key = generate_private_key(key_type)
    return sign_key(ca, key, cn, profile, days, passphrase)


def load_csr(csr_pem):
    """Parse a PEM CSR and check it is signed by its own key"""

    if isinstance(csr_pem, str):
        csr_pem = csr_pem.encode("utf-8")
    try:
        csr = x509.load_pem_x509_csr(csr_pem)
    except ValueError as e:
        raise BadRequestError("parse csr: {}".format(e), errors=e)
    try:
        valid = csr.is_signature_valid
    except UnsupportedAlgorithm as e:
        raise BadRequestError("csr sig: {}".format(e), errors=e)
    if not valid:
        raise BadRequestError("csr sig: signature does not verify")
    return csr


def csr_common_name(csr):
    attrs = csr.subject.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)
    if not attrs:
        return ""
    value = attrs[0].value
    return value if isinstance(value, str) else value.decode("utf-8", "replace")


def sign_csr(ca, csr_pem, profile, days, csr=None):
    """
    Issue a certificate for a CSR.

    The subject CN always comes from the CSR itself.

    Arguments: ca      - CAStore that signs
               csr_pem - PEM encoded request
               profile - client or server
               days    - validity in days
               csr     - already verified request, skips parsing csr_pem
    Returns:   SignResult with an empty key_pem
    """
    if csr is None:
        csr = load_csr(csr_pem)
    template = build_template(csr_common_name(csr), profile, days)
    cert_pem, serial = ca.sign(template, csr.public_key())
    return SignResult(cert_pem, "", template.not_after, str(serial))
