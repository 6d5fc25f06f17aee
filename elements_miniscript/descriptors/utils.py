"""Utilities for working with descriptors."""

import coincurve

from ..miniscript import Node
from ..utils.hashes import tagged_hash
from ..utils.script import CScript, ScriptNumError, read_script_number

# The leaf version of Tapscript, see BIP342. Elements uses its own.
TAPROOT_LEAF_TAPSCRIPT = 0xC0
ELEMENTS_LEAF_TAPSCRIPT = 0xC4


def compact_size(byte_arr):
    """The size prefix for this byte array encoded as little-endian.

    See https://en.bitcoin.it/wiki/Protocol_documentation#Variable_length_integer.
    """
    size = len(byte_arr)
    if size < 253:
        return size.to_bytes(1, "little")
    if size < 2**16:
        return b"\xfd" + size.to_bytes(2, "little")
    if size < 2**32:
        return b"\xfe" + size.to_bytes(4, "little")
    return b"\xff" + size.to_bytes(8, "little")


def varint_len(n):
    """The size of the compact size encoding of the integer {n}."""
    if n < 253:
        return 1
    if n < 2**16:
        return 3
    if n < 2**32:
        return 5
    return 9


def push_opcode_size(n):
    """The size of the opcode(s) pushing {n} bytes of data on the stack."""
    if n < 76:
        return 1
    if n < 0x100:
        return 2
    if n < 0x10000:
        return 3
    return 5


def witness_to_scriptsig(witness):
    """Create a scriptSig pushing the elements of this witness, numbers minimally."""
    elems = []
    for elem in witness:
        try:
            elems.append(read_script_number(elem))
        except ScriptNumError:
            elems.append(elem)
    return CScript(elems)


def taproot_tag(name, elements):
    """The tag of a Taproot hash. Elements hashes are domain separated from Bitcoin's
    with a '/elements' suffix."""
    return f"{name}/elements" if elements else name


def tapscript_leaf_version(elements):
    return ELEMENTS_LEAF_TAPSCRIPT if elements else TAPROOT_LEAF_TAPSCRIPT


def tapleaf_hash(leaf, leaf_version=None, elements=False):
    """Compute the hash of a Taproot leaf as defined in BIP341.

    :param leaf_version: defaults to the Tapscript leaf version of the chain.
    :param elements: whether to use the Elements tags instead of the Bitcoin ones.
    """
    if leaf_version is None:
        leaf_version = tapscript_leaf_version(elements)
    script = bytes(leaf)
    return tagged_hash(
        taproot_tag("TapLeaf", elements),
        bytes([leaf_version]) + compact_size(script) + script,
    )


def tapbranch_hash(left_hash, right_hash, elements=False):
    """Compute the Taproot branch hash for left and right child hashes.
    This takes care of the sorting as per BIP341.
    """
    assert all(isinstance(h, bytes) for h in (left_hash, right_hash))
    tag = taproot_tag("TapBranch", elements)
    if right_hash < left_hash:
        return tagged_hash(tag, right_hash + left_hash)
    return tagged_hash(tag, left_hash + right_hash)


def taproot_tweak(pubkey_bytes, merkle_root, elements=False):
    """Compute the tweak to get the output key of a Taproot, as per BIP341."""
    assert isinstance(pubkey_bytes, bytes) and len(pubkey_bytes) == 32
    assert isinstance(merkle_root, bytes)

    t = tagged_hash(taproot_tag("TapTweak", elements), pubkey_bytes + merkle_root)
    xonly_pubkey = coincurve.PublicKeyXOnly(pubkey_bytes)
    xonly_pubkey.tweak_add(t)

    return xonly_pubkey


class TreeNode:
    """A node in a Taproot tree"""

    def __init__(self, left_child, right_child):
        """Instanciate a Taproot tree node with its two child. Each may be a leaf node."""
        assert all(isinstance(c, (TreeNode, Node)) for c in (left_child, right_child))
        self.left_child = left_child
        self.right_child = right_child

    def __repr__(self):
        return f"{{{self.left_child},{self.right_child}}}"

    def _child_hash(self, child, elements):
        """The hash of a child depending on whether it's a leaf or not."""
        if isinstance(child, Node):
            return tapleaf_hash(child.script, elements=elements)
        return child.merkle_root(elements)

    def merkle_root(self, elements=False):
        return tapbranch_hash(
            self._child_hash(self.left_child, elements),
            self._child_hash(self.right_child, elements),
            elements,
        )

    def merkle_proofs(self, merkle_proof=None, elements=False):
        """Get a list of (leaf, merkle proof) pairs for all the leaves of this tree."""
        if merkle_proof is None:
            merkle_proof = []
        proofs = []
        for child, sibling in [
            (self.left_child, self.right_child),
            (self.right_child, self.left_child),
        ]:
            proof = [self._child_hash(sibling, elements)] + merkle_proof
            if isinstance(child, Node):
                proofs.append((child, proof))
            else:
                proofs += child.merkle_proofs(proof, elements)
        return proofs

    def leaves(self):
        """Get the list of all the leaves, from left to right."""
        return [
            leaf
            for child in (self.left_child, self.right_child)
            for leaf in ([child] if isinstance(child, Node) else child.leaves())
        ]

    def translate_keys(self, translator):
        return TreeNode(
            *[
                child.translate_keys(translator)
                for child in (self.left_child, self.right_child)
            ]
        )


class TaplefSat:
    """A satisfaction for a Taptree leaf."""

    def __init__(self, merkle_proof, script_sat, script):
        assert isinstance(merkle_proof, list)
        assert isinstance(script_sat, list)
        assert isinstance(script, CScript)

        self.merkle_proof = merkle_proof
        self.script = script
        self.script_sat = script_sat
        # Size of the witness, which determines the cost of using this leaf.
        self.size = (
            33
            + 32 * len(merkle_proof)
            + len(script)
            + sum(len(elem) for elem in script_sat)
        )

    def __lt__(self, other):
        """Whether this satisfaction is smaller (ie less expensive) than the other one."""
        return self.size < other.size

    def witness(self, internal_key, output_key_parity, elements=False):
        """Get the full witness for satisfying this leaf."""
        control_block = (
            bytes([tapscript_leaf_version(elements) | output_key_parity])
            + internal_key.bytes()
            + b"".join(self.merkle_proof)
        )
        return self.script_sat + [bytes(self.script), control_block]
