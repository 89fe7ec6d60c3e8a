"""
Main entry point untuk menjalankan consensus simulator.

Contoh:
  python -m benor node --node-id 0 --nodes 4 --faulty-nodes 1 --initial-value 1
  python -m benor network --nodes 4 --faulty-nodes 1 --values 1,1,0,0 --faulty 3
"""

import asyncio
import argparse
import logging
import sys

from benor.nodes.benor_node import BenOrNode
from benor.nodes.launcher import (
    ClusterClient, launch_nodes, shutdown_nodes,
    wait_for_decisions, wait_for_local_decisions
)
from benor.utils.config import Config


def setup_logging():
    """Setup logging configuration"""
    handlers = [logging.StreamHandler(sys.stdout)]
    if Config.LOG_FILE:
        handlers.append(logging.FileHandler(Config.LOG_FILE))

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def parse_values(raw: str, total_nodes: int):
    """Parse "1,1,0,?" menjadi list initial values"""
    values = [v.strip() for v in raw.split(',')] if raw else []
    if len(values) != total_nodes:
        raise ValueError(f"Expected {total_nodes} initial values, got {len(values)}")
    return values


def parse_faulty(raw: str, total_nodes: int):
    """Parse "2,3" (index faulty nodes) menjadi list of flags"""
    indexes = {int(i) for i in raw.split(',') if i.strip()} if raw else set()
    return [i in indexes for i in range(total_nodes)]


async def run_node(args):
    """Run satu node process sampai di-interrupt"""
    node_id = args.node_id
    n = args.nodes
    port = args.port if args.port is not None else Config.get_port(node_id)

    node = BenOrNode(
        node_id=node_id,
        n=n,
        f=args.faulty_nodes,
        initial_value=args.initial_value,
        faulty=args.is_faulty,
        port=port
    )

    await node.start()

    print(f"\n{'='*60}")
    print(f"  BEN-OR NODE {node_id} STARTED")
    print(f"  Address: http://{node.host}:{node.port}")
    print(f"  Peers: {node.peers}")
    print(f"{'='*60}\n")

    try:
        # Keep running
        while True:
            await asyncio.sleep(1)
    finally:
        await node.stop()


async def run_network(args):
    """Launch semua nodes dalam satu process, jalankan consensus, print hasil"""
    n = args.nodes
    values = parse_values(args.values, n)
    faulty = parse_faulty(args.faulty, n)

    nodes = await launch_nodes(n, args.faulty_nodes, values, faulty, transport=args.transport)

    try:
        if args.transport == 'local':
            for node in nodes:
                await node.start_consensus()
            states = await wait_for_local_decisions(nodes, timeout=args.timeout)
        else:
            async with ClusterClient(n) as client:
                await client.start_all()
                states = await wait_for_decisions(client, timeout=args.timeout)
    finally:
        await shutdown_nodes(nodes)

    print(f"\n{'='*60}")
    print(f"  RESULT (N={n}, F={args.faulty_nodes})")
    print(f"{'='*60}")
    for i, state in enumerate(states):
        label = 'faulty' if faulty[i] else 'live'
        print(f"  Node {i} [{label}]: x={state['x']} decided={state['decided']} k={state['k']}")

    decided = {s['x'] for s in states if s['decided'] is True}
    if len(decided) > 1:
        print("  AGREEMENT VIOLATED")
        return 1
    return 0


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description='Ben-Or Consensus Simulator')
    subparsers = parser.add_subparsers(dest='command', required=True)

    node_parser = subparsers.add_parser('node', help='Run a single node')
    node_parser.add_argument('--node-id', type=int, default=Config.NODE_ID)
    node_parser.add_argument('--nodes', type=int, default=Config.TOTAL_NODES,
                             help='Total number of nodes (N)')
    node_parser.add_argument('--faulty-nodes', type=int, default=Config.FAULTY_NODES,
                             help='Number of faulty nodes (F)')
    node_parser.add_argument('--initial-value', default=Config.INITIAL_VALUE,
                             help='Initial value: 0, 1 or ?')
    node_parser.add_argument('--is-faulty', action='store_true', default=Config.IS_FAULTY)
    node_parser.add_argument('--port', type=int, default=None)

    network_parser = subparsers.add_parser('network', help='Run a whole network in-process')
    network_parser.add_argument('--nodes', type=int, default=4)
    network_parser.add_argument('--faulty-nodes', type=int, default=0)
    network_parser.add_argument('--values', required=True,
                                help='Comma separated initial values, e.g. 1,1,0,?')
    network_parser.add_argument('--faulty', default='',
                                help='Comma separated indexes of faulty nodes')
    network_parser.add_argument('--transport', choices=['http', 'local'], default='http')
    network_parser.add_argument('--timeout', type=float, default=10.0)

    args = parser.parse_args()

    # Setup logging
    setup_logging()

    try:
        if args.command == 'node':
            Config.display()
            asyncio.run(run_node(args))
        else:
            sys.exit(asyncio.run(run_network(args)))
    except KeyboardInterrupt:
        print("\nExiting...")
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
