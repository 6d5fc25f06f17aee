"""
Miniscript
==========

Miniscript is a structured representation of a subset of Script, allowing to analyze
and satisfy Scripts generically. This implementation supports the Elements flavour of
the script contexts (Legacy, Segwitv0, Covenant, Tap, Bare) it may be used under,
including the fragments inspecting the spending transaction from a covenant.

See https://bitcoin.sipa.be/miniscript/.
"""

from .fragments import Node
from .satisfaction import SatisfactionMaterial
from . import context, fragments
