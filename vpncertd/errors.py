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

from enum import Enum


class ErrorKind(Enum):
    """Failure kinds reported to clients"""

    BAD_REQUEST = "bad_request"
    CONFLICT = "conflict"
    INTERNAL = "internal_error"
    NOT_IMPLEMENTED = "not_implemented"


class CertdError(Exception):
    """Base for every failure the daemon reports to a client

    The string form is what goes on the wire: "<kind>: <message>".
    """

    kind = ErrorKind.INTERNAL

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.message = message
        self.errors = errors

    def __str__(self):
        return "{kind}: {msg}".format(kind=self.kind.value, msg=self.message)


class BadRequestError(CertdError):
    kind = ErrorKind.BAD_REQUEST


class ConflictError(CertdError):
    kind = ErrorKind.CONFLICT


class InternalError(CertdError):
    kind = ErrorKind.INTERNAL


class NotImplementedOpError(CertdError):
    kind = ErrorKind.NOT_IMPLEMENTED


class CALoadError(InternalError):
    pass


class SigningError(InternalError):
    pass


class CRLNotFoundError(InternalError):
    pass


class PolicyError(InternalError):
    pass
