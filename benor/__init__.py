"""
Ben-Or Consensus Simulator

Simulasi binary Byzantine fault-tolerant consensus:
- N nodes, masing-masing HTTP server sendiri (aiohttp)
- Sampai F nodes faulty secara permanen
- Round engine propose/collect/decide per node
"""

__version__ = "1.0.0"
__author__ = "Your Name"
