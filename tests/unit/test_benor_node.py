"""
Integration tests untuk BenOrNode HTTP endpoints.
"""

import pytest
import asyncio
import aiohttp
from benor.nodes.benor_node import BenOrNode
from benor.nodes.launcher import ClusterClient, launch_nodes, shutdown_nodes, wait_for_decisions


async def start_node(port, n=4, f=1, initial_value=1, faulty=False, **kwargs):
    """Start satu node; peers menunjuk ke port yang tidak dipakai"""
    peers = [f"localhost:{port + 100 + j}" for j in range(n - 1)]
    node = BenOrNode(node_id=0, n=n, f=f, initial_value=initial_value, faulty=faulty,
                     host='localhost', port=port, peers=peers, **kwargs)
    await node.start()
    return node


async def get(session, port, endpoint):
    async with session.get(f"http://localhost:{port}/{endpoint}") as response:
        return response.status, await response.text()


async def get_json(session, port, endpoint):
    async with session.get(f"http://localhost:{port}/{endpoint}") as response:
        return response.status, await response.json()


async def post_vote(session, port, payload):
    async with session.post(f"http://localhost:{port}/message", json=payload) as response:
        return response.status, await response.text()


@pytest.mark.asyncio
async def test_status_live_and_faulty():
    live = await start_node(9201)
    faulty = await start_node(9202, faulty=True)

    try:
        async with aiohttp.ClientSession() as session:
            assert await get(session, 9201, 'status') == (200, 'live')
            assert await get(session, 9202, 'status') == (500, 'faulty')
    finally:
        await live.stop()
        await faulty.stop()


@pytest.mark.asyncio
async def test_faulty_node_rejects_everything():
    node = await start_node(9211, faulty=True)

    try:
        async with aiohttp.ClientSession() as session:
            status, state = await get_json(session, 9211, 'getState')
            assert status == 500
            assert state == {'killed': None, 'x': None, 'decided': None, 'k': None}

            assert (await get(session, 9211, 'start'))[0] == 500
            assert (await get(session, 9211, 'stop'))[0] == 500

            status, _ = await post_vote(session, 9211, {'from': 1, 'phase': 1, 'round': 0, 'value': 1})
            assert status == 500

        await asyncio.sleep(0.2)
        assert len(node.phase1) == 0
        assert node.engine.broadcasts_sent == 0
        assert node.state.x is None
        assert node.state.k is None
        assert node.state.decided is None
    finally:
        await node.stop()


@pytest.mark.asyncio
async def test_message_ingestion():
    """Vote valid dicatat, vote malformed di-drop tapi tetap 200"""
    node = await start_node(9221)

    try:
        async with aiohttp.ClientSession() as session:
            status, body = await post_vote(session, 9221, {'from': 1, 'phase': 1, 'round': 0, 'value': 1})
            assert status == 200
            assert '"success": true' in body

            await post_vote(session, 9221, {'from': 2, 'phase': 2, 'round': 0, 'value': 0})

            # Malformed: value di luar {0, 1}
            status, _ = await post_vote(session, 9221, {'from': 3, 'phase': 1, 'round': 0, 'value': 7})
            assert status == 200

            # Duplicate dari sender yang sama
            status, _ = await post_vote(session, 9221, {'from': 1, 'phase': 1, 'round': 0, 'value': 0})
            assert status == 200

            # Body bukan JSON
            async with session.post("http://localhost:9221/message", data=b"not json") as response:
                assert response.status == 200

        assert node.phase1.tally(0) == {0: 0, 1: 1}
        assert node.phase2.tally(0) == {0: 1, 1: 0}
    finally:
        await node.stop()


@pytest.mark.asyncio
async def test_start_resets_state_and_logs():
    node = await start_node(9231, initial_value=0, start_delay=500)
    node.state.k = 7
    node.state.x = 1

    try:
        async with aiohttp.ClientSession() as session:
            await post_vote(session, 9231, {'from': 1, 'phase': 1, 'round': 0, 'value': 1})
            assert len(node.phase1) == 1

            status, body = await get_json(session, 9231, 'start')
            assert status == 200
            assert body == {'success': True}

            status, state = await get_json(session, 9231, 'getState')
            assert status == 200
            assert state == {'killed': False, 'x': 0, 'decided': False, 'k': 0}
            assert len(node.phase1) == 0
    finally:
        await node.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent_and_freezes():
    node = await start_node(9241, quorum_timeout=20, start_delay=0)

    try:
        async with aiohttp.ClientSession() as session:
            await get(session, 9241, 'start')
            await asyncio.sleep(0.1)

            # Peers tidak ada, engine masih retry di round 0
            assert node.engine.retries > 0

            assert await get_json(session, 9241, 'stop') == (200, {'success': True})
            assert await get_json(session, 9241, 'stop') == (200, {'success': True})

            sent = node.engine.broadcasts_sent
            await asyncio.sleep(0.1)
            assert node.engine.broadcasts_sent == sent

            status, state = await get_json(session, 9241, 'getState')
            assert status == 200
            assert state == {'killed': True, 'x': 1, 'decided': None, 'k': 0}

            # Killed: status tetap live, message dan start ditolak
            assert await get(session, 9241, 'status') == (200, 'live')
            assert (await get(session, 9241, 'start'))[0] == 500
            status, _ = await post_vote(session, 9241, {'from': 1, 'phase': 1, 'round': 0, 'value': 1})
            assert status == 500
    finally:
        await node.stop()


@pytest.mark.asyncio
async def test_single_node_over_http():
    node = await start_node(9251, n=1, f=0, initial_value='?', start_delay=0)

    try:
        async with aiohttp.ClientSession() as session:
            await get(session, 9251, 'start')
            await asyncio.sleep(0.1)

            status, state = await get_json(session, 9251, 'getState')
            assert state == {'killed': False, 'x': 1, 'decided': True, 'k': 0}
    finally:
        await node.stop()


@pytest.mark.asyncio
async def test_metrics_endpoint():
    node = await start_node(9261)

    try:
        async with aiohttp.ClientSession() as session:
            await post_vote(session, 9261, {'from': 1, 'phase': 1, 'round': 0, 'value': 1})
            status, body = await get(session, 9261, 'metrics')

        assert status == 200
        assert 'votes_received_total' in body
    finally:
        await node.stop()


@pytest.mark.asyncio
async def test_http_network_reaches_agreement():
    """N=4, F=1, initial [1,1,0,0], semua honest -> semua decide value yang sama"""
    nodes = await launch_nodes(4, 1, [1, 1, 0, 0], [False] * 4,
                               base_port=9300, quorum_timeout=100, start_delay=100)

    try:
        async with ClusterClient(4, host='localhost', base_port=9300) as client:
            assert await client.statuses() == ['live'] * 4
            assert await client.start_all() == [200] * 4

            states = await wait_for_decisions(client, round_cap=15, timeout=15.0)

        assert all(s['decided'] is True for s in states)
        assert len({s['x'] for s in states}) == 1
        assert all(s['k'] < 15 for s in states)
    finally:
        await shutdown_nodes(nodes)


@pytest.mark.asyncio
async def test_http_network_with_faulty_node():
    """Validity: semua non-faulty mulai dengan 0 -> decide 0"""
    nodes = await launch_nodes(4, 1, [0, 0, 0, 1], [False, False, False, True],
                               base_port=9310, quorum_timeout=100, start_delay=100)

    try:
        async with ClusterClient(4, host='localhost', base_port=9310) as client:
            assert await client.statuses() == ['live', 'live', 'live', 'faulty']
            assert await client.start_all() == [200, 200, 200, 500]

            states = await wait_for_decisions(client, timeout=10.0)

            for state in states[:3]:
                assert state['decided'] is True
                assert state['x'] == 0
            assert states[3] == {'killed': None, 'x': None, 'decided': None, 'k': None}

            assert await client.stop_all() == [200, 200, 200, 500]
            states = await client.get_states()

        assert all(s['decided'] is None for s in states)
        assert all(s['killed'] is True for s in states[:3])
    finally:
        await shutdown_nodes(nodes)


@pytest.mark.asyncio
async def test_launch_rejects_inconsistent_arguments():
    with pytest.raises(ValueError):
        await launch_nodes(4, 1, [1, 1, 0], [False] * 4)
    with pytest.raises(ValueError):
        await launch_nodes(4, 1, [1, 1, 0, 0], [True, True, False, False])


@pytest.mark.asyncio
async def test_metrics_label_uses_route_template():
    """Unknown path tidak membuat label baru per URL"""
    node = await start_node(9271)

    try:
        async with aiohttp.ClientSession() as session:
            assert (await get(session, 9271, 'status'))[0] == 200
            assert (await get(session, 9271, 'wp-admin/setup.php'))[0] == 404
            status, body = await get(session, 9271, 'metrics')

        assert status == 200
        assert 'endpoint="/status"' in body
        assert 'endpoint="unknown"' in body
        assert 'wp-admin' not in body
    finally:
        await node.stop()


@pytest.mark.asyncio
async def test_stats_endpoint():
    """Stats engine dan transport; peers tidak ada jadi semua send gagal"""
    node = await start_node(9281, quorum_timeout=20, start_delay=0)

    try:
        async with aiohttp.ClientSession() as session:
            await get(session, 9281, 'start')
            await asyncio.sleep(0.2)

            status, stats = await get_json(session, 9281, 'stats')

        assert status == 200
        assert stats['node_id'] == 0
        assert stats['status'] == 'live'
        assert stats['engine']['round'] == 0
        assert stats['engine']['retries'] > 0
        assert stats['engine']['phase1_votes'] == 1
        assert stats['message_passing']['messages_sent'] == 0
        assert stats['message_passing']['failed_sends'] > 0
    finally:
        await node.stop()


@pytest.mark.asyncio
async def test_launch_failure_stops_started_nodes():
    """Port node 1 sudah dipakai: node 0 yang sudah listen harus di-stop"""
    blocker = await start_node(9401)

    try:
        with pytest.raises(OSError):
            await launch_nodes(4, 1, [1, 1, 0, 0], [False] * 4, base_port=9400)

        # Port node 0 bisa dipakai lagi
        node = await start_node(9400)
        await node.stop()
    finally:
        await blocker.stop()


if __name__ == "__main__":
    pytest.main([__file__, '-v'])
