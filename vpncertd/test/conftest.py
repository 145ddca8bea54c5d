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
from datetime import datetime, timedelta, timezone

from pytest import fixture

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from vpncertd.dispatcher import Certd, Dispatcher
from vpncertd.store import CA_CERT_FILE, CA_KEY_FILE, CAStore


def make_ca_key(kind):
    if kind == "rsa":
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)
    if kind == "ec":
        return ec.generate_private_key(ec.SECP256R1())
    return ed25519.Ed25519PrivateKey.generate()


def make_ca_cert(key, cn="Test VPN CA"):
    name = x509.Name([x509.NameAttribute(x509.NameOID.COMMON_NAME, cn)])
    algorithm = None if isinstance(key, ed25519.Ed25519PrivateKey) else hashes.SHA256()
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(1)
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365 * 5))
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .sign(key, algorithm)
    )


def write_pki(pki_dir, kind="ed25519", key_format=serialization.PrivateFormat.PKCS8):
    """Write a throwaway CA into pki_dir, return (key, cert)"""

    os.makedirs(pki_dir, exist_ok=True)
    key = make_ca_key(kind)
    cert = make_ca_cert(key)
    with open(os.path.join(pki_dir, CA_KEY_FILE), "wb") as fh:
        fh.write(
            key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=key_format,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
    with open(os.path.join(pki_dir, CA_CERT_FILE), "wb") as fh:
        fh.write(cert.public_bytes(serialization.Encoding.PEM))
    return key, cert


def make_csr(cn, key=None):
    key = key or ed25519.Ed25519PrivateKey.generate()
    algorithm = None if isinstance(key, ed25519.Ed25519PrivateKey) else hashes.SHA256()
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(x509.NameOID.COMMON_NAME, cn)]))
        .sign(key, algorithm)
    )
    return csr.public_bytes(serialization.Encoding.PEM).decode("utf-8")


@fixture
def pki_dir(tmp_path):
    path = str(tmp_path / "pki")
    write_pki(path)
    return path


@fixture
def state_dir(tmp_path):
    return str(tmp_path / "state")


@fixture
def ca(pki_dir, state_dir):
    return CAStore.load(pki_dir, state_dir)


@fixture
def certd(ca, tmp_path):
    return Certd(ca=ca, crl_out=str(tmp_path / "deploy" / "crl.pem"))


@fixture
def dispatcher(certd):
    return Dispatcher(certd)
