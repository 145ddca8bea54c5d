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
import re

import yaml

from vpncertd.api import Profile
from vpncertd.errors import PolicyError

log = logging.getLogger(__name__)

DEFAULT_CLIENT_DAYS = 180
DEFAULT_SERVER_DAYS = 365
DEFAULT_CN_PATTERN = r"^[A-Za-z0-9._-]{3,64}$"


class Policy:
    """Issuance policy: validity per profile and CN rules

    Loaded once and treated as read-only for the life of a request.
    """

    def __init__(
        self,
        client_days=DEFAULT_CLIENT_DAYS,
        server_days=DEFAULT_SERVER_DAYS,
        allow_duplicate_cn=False,
        cn_pattern=DEFAULT_CN_PATTERN,
    ):
        self.client_days = client_days
        self.server_days = server_days
        self.allow_duplicate_cn = allow_duplicate_cn
        self.cn_pattern = cn_pattern
        try:
            self.cn_regex = re.compile(cn_pattern)
        except re.error as e:
            raise PolicyError("invalid cn_pattern regex", errors=e)

    def __repr__(self):
        return (
            "Policy(client_days={c}, server_days={s}, "
            "allow_duplicate_cn={d}, cn_pattern={p!r})".format(
                c=self.client_days,
                s=self.server_days,
                d=self.allow_duplicate_cn,
                p=self.cn_pattern,
            )
        )

    @classmethod
    def default(cls):
        return cls()

    @classmethod
    def load(cls, path):
        """Read a YAML policy file

        A missing path or an unreadable file gives the defaults. Malformed
        YAML, a value of the wrong type or a bad CN pattern raise
        PolicyError.
        """

        if not path:
            return cls.default()
        try:
            with open(path, "r") as fh:
                raw = fh.read()
        except OSError as e:
            log.info("policy %s not readable (%s), using defaults", path, e)
            return cls.default()

        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as e:
            raise PolicyError("malformed policy file {}".format(path), errors=e)
        if not isinstance(data, dict):
            raise PolicyError("policy file {} must be a mapping".format(path))

        client_days = _positive_int(data, "client_days", DEFAULT_CLIENT_DAYS)
        server_days = _positive_int(data, "server_days", DEFAULT_SERVER_DAYS)

        allow_duplicate_cn = data.get("allow_duplicate_cn")
        if allow_duplicate_cn is None:
            allow_duplicate_cn = False
        elif not isinstance(allow_duplicate_cn, bool):
            raise PolicyError("allow_duplicate_cn must be true or false")

        cn_pattern = data.get("cn_pattern")
        if cn_pattern is not None and not isinstance(cn_pattern, str):
            raise PolicyError("cn_pattern must be a string")
        if not cn_pattern or not cn_pattern.strip():
            cn_pattern = DEFAULT_CN_PATTERN

        return cls(
            client_days=client_days,
            server_days=server_days,
            allow_duplicate_cn=allow_duplicate_cn,
            cn_pattern=cn_pattern,
        )

    def validity_days(self, profile):
        """Days of validity for a profile (Profile or its string value)"""

        if Profile(profile) is Profile.server:
            return self.server_days
        return self.client_days

    def matches_cn(self, cn):
        return self.cn_regex.search(cn) is not None


def _positive_int(data, name, default):
    """data[name] when it is a positive int, default when missing or not positive"""

    value = data.get(name)
    if value is None:
        return default
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int):
        raise PolicyError("{} must be an integer".format(name))
    return value if value > 0 else default
