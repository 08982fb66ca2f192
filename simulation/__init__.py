# PATH: simulation/__init__.py
"""
Simulation engine.

- state: build, extend and re-base the pending block stack
- queries: answer reads against the stack
- gas: gas estimation on top of the stack
- fees: EIP-1559 base fee, effective price and fee history
- signer: placeholder signatures for simulated transactions and messages
- bytecodes: helper contracts used to read balance and code
"""

from simulation.state import (
    append_block,
    append_signed_message,
    append_transaction,
    create_simulation_state,
    refresh_simulation_state,
)
from simulation.signer import MockSigner, SimulationSigner

__all__ = [
    "append_block",
    "append_signed_message",
    "append_transaction",
    "create_simulation_state",
    "refresh_simulation_state",
    "MockSigner",
    "SimulationSigner",
]
