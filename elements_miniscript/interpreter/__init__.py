"""
An interpreter of spending data.

From the scriptPubKey of a spent output and the scriptSig and witness of the input
spending it, recover the key or the Miniscript being spent along with the stack it is
spent with.
"""

from .inner import (
    BitcoinKey,
    ControlBlock,
    CovScriptInner,
    Inner,
    PubkeyType,
    PublicKeyInner,
    ScriptInner,
    ScriptType,
    TypedHash160,
    from_txdata,
)
from .stack import DISSATISFIED, SATISFIED, Element, Push, Stack
