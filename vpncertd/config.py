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
import argparse

APP_NAME = "vpn-certd"

ENV_SOCKET = "VPN_CERTD_SOCKET"
ENV_PKI_DIR = "VPN_CERTD_PKI_DIR"
ENV_STATE_DIR = "VPN_CERTD_STATE_DIR"
ENV_LOG_LEVEL = "VPN_CERTD_LOG_LEVEL"
ENV_POLICY_PATH = "VPNCERTD_POLICY"
ENV_CRL_OUT_PATH = "VPNCERTD_CRL_OUT"

DEFAULT_SOCKET_PATH = "/run/vpn-certd.sock"
DEFAULT_PKI_DIR = "/etc/vpn-certd/pki"
DEFAULT_STATE_DIR = "/var/lib/vpn-certd"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_POLICY = "/etc/vpn-certd/policy.yaml"
DEFAULT_CRL_OUT = "/etc/openvpn/crl.pem"

SHUTDOWN_TIMEOUT = 5
READ_WRITE_DEADLINE = 30


class Config:
    def __init__(
        self,
        socket_path=DEFAULT_SOCKET_PATH,
        pki_dir=DEFAULT_PKI_DIR,
        state_dir=DEFAULT_STATE_DIR,
        log_level=DEFAULT_LOG_LEVEL,
        policy_path=DEFAULT_POLICY,
        crl_out_path=DEFAULT_CRL_OUT,
    ):
        self.socket_path = socket_path
        self.pki_dir = pki_dir
        self.state_dir = state_dir
        self.log_level = log_level
        self.policy_path = policy_path
        self.crl_out_path = crl_out_path

    def __repr__(self):
        return "Config({})".format(
            ", ".join("{}={!r}".format(k, v) for k, v in sorted(vars(self).items()))
        )


def getenv_default(name, default, environ=None):
    """Value of an environment variable, ignoring unset and empty values"""

    environ = os.environ if environ is None else environ
    value = environ.get(name)
    return value if value else default


def load_config(argv=None, environ=None):
    """Build a Config from flags whose defaults come from the environment"""

    env = lambda name, default: getenv_default(name, default, environ)
    parser = argparse.ArgumentParser(
        prog=APP_NAME, description="Private CA daemon for the VPN fleet."
    )
    parser.add_argument(
        "--socket", default=env(ENV_SOCKET, DEFAULT_SOCKET_PATH), help="UNIX socket path"
    )
    parser.add_argument(
        "--pki",
        default=env(ENV_PKI_DIR, DEFAULT_PKI_DIR),
        help="PKI directory (intermediate CA)",
    )
    parser.add_argument(
        "--state", default=env(ENV_STATE_DIR, DEFAULT_STATE_DIR), help="State directory"
    )
    parser.add_argument(
        "--log-level",
        default=env(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL),
        help="log level: debug|info|warn|error",
    )
    parser.add_argument(
        "--policy",
        default=env(ENV_POLICY_PATH, DEFAULT_POLICY),
        help="policy YAML file path",
    )
    parser.add_argument(
        "--crl-out",
        default=env(ENV_CRL_OUT_PATH, DEFAULT_CRL_OUT),
        help="CRL deployment path for the VPN server",
    )
    args = parser.parse_args(argv)

    return Config(
        socket_path=args.socket,
        pki_dir=args.pki,
        state_dir=args.state,
        log_level=args.log_level,
        policy_path=args.policy,
        crl_out_path=args.crl_out,
    )
