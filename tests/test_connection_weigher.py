import pytest

from riskgraph.core.connection_weigher import compute_strength
from riskgraph.errors import InvalidConnectionError
from riskgraph.models.analysis import ConnectionEvent
from riskgraph.models.risk_node import FLAG_SHARED_DEVICE_3PLUS, ConnectionType


def test_strength_monotonic_and_capped():
    values = [compute_strength(0.9, n) for n in range(0, 12)]
    assert values[0] == 0.0
    assert values == sorted(values)
    assert max(values) == pytest.approx(0.9)
    assert compute_strength(0.9, 5) == pytest.approx(0.9)


@pytest.mark.anyio
async def test_record_is_symmetric(link, node_store):
    await link("u1", "u2", ConnectionType.IP_MATCH, value="10.0.0.1")

    a, b = await node_store.require("u1"), await node_store.require("u2")
    assert a.connections["u2"].type == ConnectionType.IP_MATCH
    assert b.connections["u1"].type == ConnectionType.IP_MATCH
    assert a.connections["u2"].weight == 0.8
    assert "shared_ip" in a.connections["u2"].flags
    assert a.metadata.ip_addresses == {"10.0.0.1"}
    assert b.metadata.ip_addresses == {"10.0.0.1"}


@pytest.mark.anyio
async def test_repeat_observations_raise_strength(link, node_store):
    await link("u1", "u2", ConnectionType.CHAT)
    first = (await node_store.require("u1")).connections["u2"]
    await link("u1", "u2", ConnectionType.CHAT, times=3)
    later = (await node_store.require("u1")).connections["u2"]

    assert later.interaction_count == 4
    assert later.strength > first.strength
    assert later.risk_score == round(later.strength * 100)


@pytest.mark.anyio
async def test_heavier_type_upgrades_connection(link, node_store):
    await link("u1", "u2", ConnectionType.CHAT)
    await link("u1", "u2", ConnectionType.DEVICE_MATCH, value="fp-9")
    await link("u1", "u2", ConnectionType.REFERRAL)

    conn = (await node_store.require("u2")).connections["u1"]
    assert conn.type == ConnectionType.DEVICE_MATCH
    assert conn.weight == 0.9
    assert conn.observed_types == {
        ConnectionType.CHAT, ConnectionType.DEVICE_MATCH, ConnectionType.REFERRAL,
    }


@pytest.mark.anyio
async def test_self_connection_rejected(weigher):
    with pytest.raises(InvalidConnectionError):
        await weigher.record(ConnectionEvent(
            source_user_id="u1", target_user_id="u1", type=ConnectionType.CHAT,
        ))


@pytest.mark.anyio
async def test_both_nodes_marked_dirty(link, node_store):
    await link("u1", "u2", ConnectionType.TRANSACTION)
    assert await node_store.pop_dirty(10) == ["u1", "u2"]
    assert await node_store.dirty_count() == 0


@pytest.mark.anyio
async def test_multi_account_flag_accumulates(link, node_store):
    for other in ("y1", "y2", "y3"):
        await link("x", other, value="fp-shared")
    node = await node_store.require("x")
    assert FLAG_SHARED_DEVICE_3PLUS in node.flags
    assert FLAG_SHARED_DEVICE_3PLUS not in (await node_store.require("y1")).flags
