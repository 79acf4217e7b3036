"""Tests for the HTTP control surface."""

import asyncio

from aiohttp import test_utils

from conftest import FakeTransport, PeerFactory
from presence.app import PresenceClient


def run_with_client(check, transport=None, peers=None, config=None):
    async def scenario():
        presence = PresenceClient(config, transport=transport or FakeTransport(),
                                  peer_factory=peers or PeerFactory())
        async with test_utils.TestClient(test_utils.TestServer(presence.build_app())) as http:
            await check(presence, http)
        await presence.cleanup()

    asyncio.run(scenario())


def test_status_reports_session(config):
    async def check(presence, http):
        await presence.start()
        resp = await http.get("/status")
        assert resp.status == 200
        body = await resp.json()
        assert body["channel_id"] == "RAVEN"
        assert body["session"]["state"] == "ready_to_connect"
        assert body["errors"] == []

    run_with_client(check, config=config)


def test_connect_before_authentication_conflicts(config):
    async def check(presence, http):
        resp = await http.post("/connect")
        assert resp.status == 409

    run_with_client(check, config=config)


def test_channel_change_and_connect(config):
    transport = FakeTransport()

    async def check(presence, http):
        await presence.start()

        resp = await http.post("/channel", json={"channelId": "ALPHA"})
        assert resp.status == 200
        assert (await resp.json()) == {"channel_id": "ALPHA", "changed": True}
        assert transport.unsubscribe_calls == ["answer:RAVEN", "icecandidate:RAVEN"]

        resp = await http.post("/connect")
        assert resp.status == 200
        assert (await resp.json())["ok"] is True
        assert transport.emitted == [("signal", {"channelId": "ALPHA"})]

        resp = await http.post("/channel", json={"channelId": "BETA"})
        assert resp.status == 409

    run_with_client(check, transport=transport, config=config)


def test_invalid_channel_rejected(config):
    async def check(presence, http):
        await presence.start()
        resp = await http.post("/channel", json={"channelId": ""})
        assert resp.status == 400
        resp = await http.post("/channel", data="not json")
        assert resp.status == 400

    run_with_client(check, config=config)


def test_null_offer_sets_fatal_event(config):
    transport = FakeTransport()
    transport.ack_reply = (None, None)

    async def check(presence, http):
        await presence.start()
        resp = await http.post("/connect")
        assert resp.status == 500
        assert (await resp.json())["fatal"] is True
        assert presence.fatal_event.is_set()

        resp = await http.post("/reset")
        assert resp.status == 409

        status = await (await http.get("/status")).json()
        assert status["errors"][0]["error_type"] == "SignalingProtocolError"

    run_with_client(check, transport=transport, config=config)


def test_pose_endpoint(config):
    peers = PeerFactory()

    async def check(presence, http):
        await presence.start()
        await presence.connect()

        resp = await http.post("/pose", json={"x": 1, "y": 2, "z": 3, "rx": 0, "ry": 0, "rz": 0})
        assert (await resp.json()) == {"sent": False}

        peers.peers[0].fire_state("connected")
        resp = await http.post("/pose", json={"position": [0.1, 0.2, 0.3], "quaternion": [1, 0, 0, 0]})
        assert (await resp.json()) == {"sent": True}
        assert peers.peers[0].sent[0].startswith(b'{"x":"0.10000"')

        resp = await http.post("/pose", json={"x": 1})
        assert resp.status == 400

    run_with_client(check, peers=peers, config=config)


def test_start_recovers_after_signaling_connect_failure(config):
    transport = FakeTransport()
    transport.connect_failures = 1

    async def check(presence, http):
        assert await presence.start() is False
        assert presence.negotiation.state.value == "failed"

        resp = await http.post("/connect")
        assert resp.status == 409

        resp = await http.post("/start")
        assert resp.status == 200
        assert (await resp.json()) == {"ok": True, "state": "ready_to_connect"}

        resp = await http.post("/start")
        assert resp.status == 409

        resp = await http.post("/connect")
        assert resp.status == 200
        assert transport.emitted == [("signal", {"channelId": "RAVEN"})]

    run_with_client(check, transport=transport, config=config)
