"""Tests for the Nomad HTTP helpers against a local HTTP server."""

from __future__ import annotations

import json

import pytest

from nomad_chaos.errors import RemoteFailureError
from nomad_chaos.nomad_api import check_health, query_leader


class TestQueryLeader:
    def test_returns_address(self, nomad) -> None:
        state, address = nomad
        assert query_leader(address) == "10.0.0.11:4647"

    def test_no_leader(self, nomad) -> None:
        state, address = nomad
        state.leader_body = json.dumps("")
        assert query_leader(address) == ""

    def test_sends_token(self, nomad) -> None:
        state, address = nomad
        query_leader(address, token="secret")
        query_leader(address)
        assert state.tokens == ["secret", None]

    def test_bad_status(self, nomad) -> None:
        state, address = nomad
        state.leader_status = 500
        with pytest.raises(RemoteFailureError, match="unexpected status: 500"):
            query_leader(address)

    def test_bad_body(self, nomad) -> None:
        state, address = nomad
        state.leader_body = "{not json"
        with pytest.raises(RemoteFailureError, match="decoding"):
            query_leader(address)
        state.leader_body = json.dumps({"leader": "x"})
        with pytest.raises(RemoteFailureError, match="unexpected leader response"):
            query_leader(address)

    def test_malformed_http_response(self, garbage_address) -> None:
        with pytest.raises(RemoteFailureError, match="querying"):
            query_leader(garbage_address, timeout=2.0)

    def test_invalid_address(self) -> None:
        with pytest.raises(RemoteFailureError, match="querying"):
            query_leader("not-a-url")

    def test_unreachable(self) -> None:
        with pytest.raises(RemoteFailureError):
            query_leader("http://127.0.0.1:1", timeout=1.0)


class TestCheckHealth:
    def test_healthy(self, nomad) -> None:
        state, address = nomad
        assert check_health(address, token="secret") is True
        assert state.tokens == ["secret"]

    def test_unhealthy_status(self, nomad) -> None:
        state, address = nomad
        state.health_status = 503
        assert check_health(address) is False

    def test_malformed_http_response(self, garbage_address) -> None:
        with pytest.raises(RemoteFailureError, match="querying"):
            check_health(garbage_address, timeout=2.0)

    def test_invalid_address(self) -> None:
        with pytest.raises(RemoteFailureError):
            check_health("ftp//nowhere")

    def test_unreachable(self) -> None:
        with pytest.raises(RemoteFailureError):
            check_health("http://127.0.0.1:1", timeout=1.0)
