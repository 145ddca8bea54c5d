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

__version__ = "0.2.0"

from vpncertd.api import (
    Op,
    Profile,
    KeyType,
    Request,
    Response,
    IssuedMeta,
)
from vpncertd.errors import (
    ErrorKind,
    CertdError,
    BadRequestError,
    ConflictError,
    InternalError,
    NotImplementedOpError,
    CALoadError,
    SigningError,
    CRLNotFoundError,
    PolicyError,
)
from vpncertd.policy import Policy
from vpncertd.store import CAStore, CAKey, KeyAlgorithm
from vpncertd.index import IssuanceIndex
from vpncertd.crl import RevocationLedger
from vpncertd.dispatcher import Certd, Dispatcher
from vpncertd.server import UnixJSONServer

__all__ = [
    Op,
    Profile,
    KeyType,
    Request,
    Response,
    IssuedMeta,
    ErrorKind,
    CertdError,
    BadRequestError,
    ConflictError,
    InternalError,
    NotImplementedOpError,
    CALoadError,
    SigningError,
    CRLNotFoundError,
    PolicyError,
    Policy,
    CAStore,
    CAKey,
    KeyAlgorithm,
    IssuanceIndex,
    RevocationLedger,
    Certd,
    Dispatcher,
    UnixJSONServer,
]
