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

import io
import json
import logging

from pytest import fixture

from vpncertd import config
from vpncertd.log import configure_logging, parse_level


@fixture
def vpncertd_logger():
    logger = logging.getLogger("vpncertd")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


def test_config_defaults():
    cfg = config.load_config([], environ={})
    assert cfg.socket_path == config.DEFAULT_SOCKET_PATH
    assert cfg.pki_dir == config.DEFAULT_PKI_DIR
    assert cfg.state_dir == config.DEFAULT_STATE_DIR
    assert cfg.log_level == "info"
    assert cfg.policy_path == config.DEFAULT_POLICY
    assert cfg.crl_out_path == config.DEFAULT_CRL_OUT


def test_config_environment():
    environ = {
        "VPN_CERTD_SOCKET": "/tmp/certd.sock",
        "VPN_CERTD_PKI_DIR": "/srv/pki",
        "VPN_CERTD_STATE_DIR": "",
        "VPN_CERTD_LOG_LEVEL": "debug",
        "VPNCERTD_POLICY": "/srv/policy.yaml",
    }
    cfg = config.load_config([], environ=environ)
    assert cfg.socket_path == "/tmp/certd.sock"
    assert cfg.pki_dir == "/srv/pki"
    # empty values fall back to the default
    assert cfg.state_dir == config.DEFAULT_STATE_DIR
    assert cfg.log_level == "debug"
    assert cfg.policy_path == "/srv/policy.yaml"


def test_flags_override_environment():
    environ = {"VPN_CERTD_SOCKET": "/tmp/env.sock"}
    cfg = config.load_config(
        ["--socket", "/tmp/flag.sock", "--crl-out", "/tmp/crl.pem", "--policy", ""],
        environ=environ,
    )
    assert cfg.socket_path == "/tmp/flag.sock"
    assert cfg.crl_out_path == "/tmp/crl.pem"
    assert cfg.policy_path == ""
    assert "socket_path='/tmp/flag.sock'" in repr(cfg)


def test_getenv_default():
    assert config.getenv_default("X", "d", environ={}) == "d"
    assert config.getenv_default("X", "d", environ={"X": ""}) == "d"
    assert config.getenv_default("X", "d", environ={"X": "v"}) == "v"


def test_parse_level():
    assert parse_level("debug") == logging.DEBUG
    assert parse_level(" WARN ") == logging.WARNING
    assert parse_level("warning") == logging.WARNING
    assert parse_level("error") == logging.ERROR
    assert parse_level("loud") == logging.INFO
    assert parse_level("") == logging.INFO


def test_json_log_lines(vpncertd_logger):
    stream = io.StringIO()
    configure_logging("info", stream=stream)
    log = logging.getLogger("vpncertd.server")

    log.debug("hidden")
    log.info("listening", extra={"socket": "/run/vpn-certd.sock"})
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        log.exception("handler failed for %s", "SIGN")

    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert len(lines) == 2

    first, second = lines
    assert first["level"] == "INFO"
    assert first["logger"] == "vpncertd.server"
    assert first["msg"] == "listening"
    assert first["socket"] == "/run/vpn-certd.sock"
    assert first["time"].endswith("+00:00")
    assert "exc" not in first

    assert second["level"] == "ERROR"
    assert second["msg"] == "handler failed for SIGN"
    assert "RuntimeError: boom" in second["exc"]


def test_configure_logging_replaces_handlers(vpncertd_logger):
    configure_logging("debug", stream=io.StringIO())
    logger = configure_logging("error", stream=io.StringIO())
    assert len(logger.handlers) == 1
    assert logger.level == logging.ERROR
    assert logger.propagate is False
