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
import logging
import tempfile
import threading
from enum import Enum
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from vpncertd.errors import CALoadError, SigningError
from vpncertd.validate import pem_type

log = logging.getLogger(__name__)

CA_KEY_FILE = "int-ca.key"
CA_CERT_FILE = "int-ca.crt"
SERIAL_FILE = "serial"

SERIAL_BASELINE = 1000
DEFAULT_VALIDITY_DAYS = 180
# not-before is backdated to tolerate clock skew on the first use of a cert
CLOCK_SKEW = timedelta(minutes=1)

DIR_PERM = 0o700
FILE_PERM = 0o600


class KeyAlgorithm(Enum):
    """Algorithms the CA signing key may use"""

    rsa = "rsa"
    ec = "ec"
    ed25519 = "ed25519"


# which algorithms each PEM tag may carry
_PEM_KEY_TAGS = {
    "RSA PRIVATE KEY": {KeyAlgorithm.rsa},
    "EC PRIVATE KEY": {KeyAlgorithm.ec},
    "PRIVATE KEY": {KeyAlgorithm.rsa, KeyAlgorithm.ec, KeyAlgorithm.ed25519},
}


class CAKey:
    """A CA signing key tagged with its algorithm"""

    def __init__(self, algorithm, key):
        self.algorithm = KeyAlgorithm(algorithm)
        self.key = key

    def __repr__(self):
        return "CAKey({})".format(self.algorithm.value)

    @classmethod
    def from_private_key(cls, key):
        if isinstance(key, rsa.RSAPrivateKey):
            return cls(KeyAlgorithm.rsa, key)
        if isinstance(key, ec.EllipticCurvePrivateKey):
            return cls(KeyAlgorithm.ec, key)
        if isinstance(key, ed25519.Ed25519PrivateKey):
            return cls(KeyAlgorithm.ed25519, key)
        raise ValueError("unsupported key type {}".format(type(key).__name__))

    def public_key(self):
        return self.key.public_key()

    def hash_algorithm(self, cert=None):
        """Digest to sign with, following the CA certificate when it can

        Ed25519 signs the message directly and takes no digest.
        """

        if self.algorithm is KeyAlgorithm.ed25519:
            return None
        if cert is not None and cert.signature_hash_algorithm is not None:
            return cert.signature_hash_algorithm
        return hashes.SHA256()


def load_private_key(data):
    """Decode a PEM private key, choosing the decoder from its PEM tag

    Supports PKCS#1 (RSA PRIVATE KEY), SEC1 (EC PRIVATE KEY) and PKCS#8
    (PRIVATE KEY) holding RSA, EC or Ed25519 keys.
    """

    if isinstance(data, bytes):
        data = data.decode("ascii", errors="replace")
    tag = pem_type(data)
    if tag is None:
        raise ValueError("invalid CA key PEM")
    allowed = _PEM_KEY_TAGS.get(tag)
    if allowed is None:
        raise ValueError("unsupported key PEM type {!r}".format(tag))

    key = serialization.load_pem_private_key(data.encode("ascii"), password=None)
    ca_key = CAKey.from_private_key(key)
    if ca_key.algorithm not in allowed:
        raise ValueError(
            "{} key found in {!r} block".format(ca_key.algorithm.value, tag)
        )
    return ca_key


@contextmanager
def open_state_file(file_path, mode, private=True):
    """Context to ensure correct permissions for state files and directories

    Ensures:
        - A containing directory restricted to the owner (0o700)
        - 0o600 for private files and 0o644 for public ones
    """

    containing_dir = os.path.dirname(file_path)
    if "r" not in mode:
        os.makedirs(containing_dir, mode=DIR_PERM, exist_ok=True)
    fh = open(file_path, mode)
    try:
        yield fh
    finally:
        fh.close()
    if "r" not in mode:
        os.chmod(file_path, mode=FILE_PERM if private else 0o644)


def atomic_write(file_path, data, private=True):
    """Replace file_path with data so readers never see a partial write"""

    if isinstance(data, str):
        data = data.encode("utf-8")
    containing_dir = os.path.dirname(file_path) or "."
    os.makedirs(containing_dir, mode=DIR_PERM, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=containing_dir, prefix="." + os.path.basename(file_path) + "."
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_path, FILE_PERM if private else 0o644)
        os.replace(tmp_path, file_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class CertTemplate:
    """What to put in a certificate before the CA stamps serial and dates"""

    def __init__(self, common_name, extensions=None, not_after=None):
        self.common_name = common_name
        self.extensions = extensions or []
        self.not_before = None
        self.not_after = not_after

    def subject(self):
        return x509.Name(
            [x509.NameAttribute(x509.oid.NameOID.COMMON_NAME, self.common_name)]
        )


class CAStore:
    """Owns the CA identity and the persistent serial counter

    The writer lock serializes every read-modify-write of the state
    directory: serial allocation, issuance appends and revocations.
    """

    def __init__(self, cert, key, pki_dir, state_dir, chain=None):
        self.cert = cert
        self.key = key
        self.chain = chain or []
        self.pki_dir = pki_dir
        self.state_dir = state_dir
        self.lock = threading.RLock()

    @classmethod
    def load(cls, pki_dir, state_dir):
        """Load the CA key and certificate and prepare the state directory

        Arguments: pki_dir   - directory holding int-ca.key and int-ca.crt
                   state_dir - directory for the serial counter, logs and CRL
        Returns:   A CAStore
        """

        key_path = os.path.join(pki_dir, CA_KEY_FILE)
        cert_path = os.path.join(pki_dir, CA_CERT_FILE)

        try:
            with open(key_path, "rb") as fh:
                key_pem = fh.read()
        except OSError as e:
            raise CALoadError("read key: {}".format(e), errors=e)
        try:
            key = load_private_key(key_pem)
        except ValueError as e:
            raise CALoadError("parse key: {}".format(e), errors=e)

        try:
            with open(cert_path, "rb") as fh:
                cert_pem = fh.read()
        except OSError as e:
            raise CALoadError("read cert: {}".format(e), errors=e)
        tag = pem_type(cert_pem.decode("ascii", errors="replace"))
        if tag is None or "CERTIFICATE" not in tag:
            raise CALoadError("invalid CA cert PEM")
        try:
            certs = x509.load_pem_x509_certificates(cert_pem)
        except ValueError as e:
            raise CALoadError("parse cert: {}".format(e), errors=e)

        try:
            os.makedirs(state_dir, mode=DIR_PERM, exist_ok=True)
            serial_path = os.path.join(state_dir, SERIAL_FILE)
            if not os.path.exists(serial_path):
                atomic_write(serial_path, str(SERIAL_BASELINE))
        except OSError as e:
            raise CALoadError("init state: {}".format(e), errors=e)

        log.info(
            "loaded CA %s (%s key)",
            certs[0].subject.rfc4514_string(),
            key.algorithm.value,
        )
        return cls(certs[0], key, pki_dir, state_dir, chain=certs[1:])

    def state_path(self, name):
        return os.path.join(self.state_dir, name)

    def allocate_serial(self):
        """Return the next serial and persist its successor"""

        path = self.state_path(SERIAL_FILE)
        with self.lock:
            with open_state_file(path, "r") as fh:
                text = fh.read().strip()
            if not text.isdigit():
                raise SigningError("bad serial file {}".format(path))
            serial = int(text)
            atomic_write(path, str(serial + 1))
        return serial

    def sign(self, template, public_key):
        """
        Stamp a template with a fresh serial and validity and sign it.

        Arguments: template   - CertTemplate to issue
                   public_key - the subject public key
        Returns:   (certificate PEM string, serial int)
        """

        with self.lock:
            try:
                serial = self.allocate_serial()
            except OSError as e:
                raise SigningError("serial: {}".format(e), errors=e)

            not_before = datetime.now(timezone.utc) - CLOCK_SKEW
            template.not_before = not_before
            if template.not_after is None:
                template.not_after = not_before + timedelta(days=DEFAULT_VALIDITY_DAYS)

            cert_builder = (
                x509.CertificateBuilder()
                .subject_name(template.subject())
                .serial_number(serial)
                .not_valid_before(not_before)
                .not_valid_after(template.not_after)
                .issuer_name(self.cert.subject)
                .public_key(public_key)
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False
                )
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(
                        self.key.public_key()
                    ),
                    critical=False,
                )
            )
            for ext, critical in template.extensions:
                cert_builder = cert_builder.add_extension(ext, critical=critical)

            try:
                cert = cert_builder.sign(
                    self.key.key, algorithm=self.key.hash_algorithm(self.cert)
                )
            except (ValueError, TypeError) as e:
                raise SigningError("create cert: {}".format(e), errors=e)

        log.info("signed serial %d for %s", serial, template.common_name)
        return cert.public_bytes(serialization.Encoding.PEM).decode("utf-8"), serial

    def cert_pem(self):
        return self.cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")
