# PATH: harness/__init__.py
"""
Test harness surface: the EIP-1193 provider facade, its request schemas and
contract artifact helpers.
"""

from harness.provider import MockEthereumProvider

__all__ = ["MockEthereumProvider"]
