"""U2F/CTAP1 security key communication over HID: framing, commands, transactions and virtual tokens."""

__version__ = "0.1.0"
__all__ = [
    "fidodev",
    "protocol",
    "softtoken",
    "statecallback",
    "statemachine",
    "testtoken",
    "transaction",
    "u2ftypes",
]