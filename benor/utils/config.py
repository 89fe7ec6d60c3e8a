"""
Configuration manager untuk consensus simulator.
File ini membaca environment variables dan menyediakan
konfigurasi default untuk semua komponen sistem.
"""

import os
from typing import List
from dotenv import load_dotenv

# Load environment variables dari .env file
load_dotenv()


def _get_bool(name: str, default: bool) -> bool:
    """Parse boolean env variable ("1", "true", "yes", "on")"""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Class untuk manage semua konfigurasi sistem"""

    # Node Configuration
    NODE_ID: int = int(os.getenv('NODE_ID', 0))
    NODE_HOST: str = os.getenv('NODE_HOST', 'localhost')
    BASE_NODE_PORT: int = int(os.getenv('BASE_NODE_PORT', 3000))

    # Network Configuration
    TOTAL_NODES: int = int(os.getenv('TOTAL_NODES', 1))
    FAULTY_NODES: int = int(os.getenv('FAULTY_NODES', 0))
    INITIAL_VALUE: str = os.getenv('INITIAL_VALUE', '?')
    IS_FAULTY: bool = _get_bool('IS_FAULTY', False)

    # Consensus Configuration (dalam milliseconds)
    ROUND_CAP: int = int(os.getenv('ROUND_CAP', 15))
    QUORUM_TIMEOUT: int = int(os.getenv('QUORUM_TIMEOUT', 100))
    START_DELAY: int = int(os.getenv('START_DELAY', 100))
    FALLBACK_VALUE: int = int(os.getenv('FALLBACK_VALUE', 1))
    # Kedua default ini mengubah cara quorum dihitung: satu vote per sender
    # per round, dan vote milik node sendiri ikut dihitung. Set keduanya
    # False untuk tally literal (semua duplicate dihitung, hanya vote peers).
    # Dengan tally literal, split [1,1,0,0] bisa berosilasi sampai ROUND_CAP
    # dan node bisa macet saat F peers diam. Announcement (1, k+1, v) dan
    # (2, k+1, v) setelah decide juga ada supaya peers tidak macet.
    DEDUPLICATE_VOTES: bool = _get_bool('DEDUPLICATE_VOTES', True)
    COUNT_OWN_VOTE: bool = _get_bool('COUNT_OWN_VOTE', True)

    # Transport Configuration (dalam seconds)
    SEND_TIMEOUT: float = float(os.getenv('SEND_TIMEOUT', 5))

    # Logging
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE: str = os.getenv('LOG_FILE', '')

    @classmethod
    def get_port(cls, node_id: int) -> int:
        """Port untuk node_id: BASE_NODE_PORT + node_id"""
        return cls.BASE_NODE_PORT + node_id

    @classmethod
    def get_peers(cls, node_id: int, total_nodes: int) -> List[str]:
        """
        Build peer addresses untuk node_id.
        Node i listen di BASE_NODE_PORT + i, self tidak termasuk.
        Returns: List of "host:port"
        """
        return [
            f"{cls.NODE_HOST}:{cls.get_port(i)}"
            for i in range(total_nodes)
            if i != node_id
        ]

    @classmethod
    def display(cls):
        """Print semua konfigurasi untuk debugging"""
        print("=== Configuration ===")
        print(f"Node ID: {cls.NODE_ID}")
        print(f"Node Address: {cls.NODE_HOST}:{cls.get_port(cls.NODE_ID)}")
        print(f"Network: N={cls.TOTAL_NODES}, F={cls.FAULTY_NODES}")
        print(f"Peers: {cls.get_peers(cls.NODE_ID, cls.TOTAL_NODES)}")
        print(f"Round cap: {cls.ROUND_CAP}, quorum timeout: {cls.QUORUM_TIMEOUT}ms")
        print(f"Dedup votes: {cls.DEDUPLICATE_VOTES}, count own vote: {cls.COUNT_OWN_VOTE}")
        print("=" * 30)


# Test configuration saat file dijalankan langsung
if __name__ == "__main__":
    Config.display()
