"""Machine faults raised by the interpreter core.

All faults are raised before the failing instruction changes any state, so
the caller can inspect the machine and decide whether to halt or report.
"""

from __future__ import annotations


class MachineFault(Exception):
    """Base class for every fault the core surfaces to its driver."""

    pass


class DecodeFault(MachineFault):
    """Instruction word at `address` matches no known opcode."""

    def __init__(self, word: int, address: int) -> None:
        self.word = word
        self.address = address
        super().__init__(f"Unknown opcode 0x{word:04X} at 0x{address:03X}")


class StackFault(MachineFault):
    """Call stack overflow (call at capacity) or underflow (return when empty)."""

    pass


class MemoryFault(MachineFault):
    """Computed address falls outside memory."""

    def __init__(self, address: int, what: str = "access") -> None:
        self.address = address
        super().__init__(f"Memory {what} out of range at 0x{address:X}")


class LoadSizeFault(MachineFault):
    """Program image does not fit above the load address."""

    def __init__(self, size: int, capacity: int) -> None:
        self.size = size
        self.capacity = capacity
        super().__init__(f"Program of {size} bytes doesn't fit into {capacity} bytes of memory")
