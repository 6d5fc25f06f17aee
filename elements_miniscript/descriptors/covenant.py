"""
Covenant descriptors.

A covenant descriptor 'elcovwsh(K,ms)' is a P2WSH output whose witness Script checks a
signature for K twice: once with OP_CHECKSIGVERIFY against the transaction, and once
with OP_CHECKSIGFROMSTACK against a signature hash the spender rebuilds on the stack from
its components. Since both checks must succeed for the same signature, the components
are those of the spending transaction and the Miniscript 'ms' can inspect them
through the introspection fragments (ver_eq(), outputs_pref()) of the Covenant context.

The Script is:
    <ms as VERIFY> 11 PICK OVER 1 LEFT CAT <K> DUP TOALTSTACK CODESEPARATOR CHECKSIGVERIFY
    CAT CAT CAT CAT CAT CAT CAT CAT CAT CAT SHA256 FROMALTSTACK CHECKSIGFROMSTACK
"""

import copy
import logging

from elements_miniscript.key import DescriptorKey, DescriptorKeyError
from elements_miniscript.miniscript import Node
from elements_miniscript.miniscript.context import (
    MAX_OPS_PER_SCRIPT,
    MAX_SCRIPT_SIZE,
    MAX_STANDARD_P2WSH_SCRIPT_SIZE,
    Covenant,
)
from elements_miniscript.miniscript.errors import (
    MiniscriptContextError,
    MiniscriptMalformed,
    MiniscriptNodeCreationError,
)
from elements_miniscript.miniscript.fragments import WrapV
from elements_miniscript.miniscript.parsing import (
    decompose_script,
    is_ecdsa_key_push,
    parse_script_elems,
)
from elements_miniscript.utils.hashes import hash256
from elements_miniscript.utils.script import (
    CScript,
    CScriptOp,
    OP_CAT,
    OP_CHECKSIG,
    OP_CHECKSIGFROMSTACK,
    OP_CHECKSIGVERIFY,
    OP_CODESEPARATOR,
    OP_DUP,
    OP_FROMALTSTACK,
    OP_LEFT,
    OP_OVER,
    OP_PICK,
    OP_SHA256,
    OP_TOALTSTACK,
    OP_VERIFY,
)

from . import Descriptor, p2wsh_script, satisfy_ms, ms_satisfaction_size
from .errors import (
    BadCovDescriptor,
    CovenantSighashTypeMismatch,
    DescriptorParsingError,
    ImpossibleSatisfaction,
    MissingCovSignature,
    MissingSighashItem,
    ScriptSizeTooLarge,
)
from .parsing import parse_key, parse_miniscript
from .utils import compact_size, varint_len

logger = logging.getLogger(__name__)

# The number of executed operations added by the covenant on top of the Miniscript
# (including its final VERIFY) and the size of the Script it adds.
COV_OPS_COUNT = 24
COV_SCRIPT_SIZE = 58

# The number of covenant items in a satisfaction (signature and signature hash
# components), and an upper bound on their total size.
COV_ITEMS_COUNT = 12
COV_MAX_ITEMS_SIZE = 312

# The index of the item to pick on the stack to get the covenant signature.
COV_SIG_PICK_INDEX = 11

# The number of CATs needed to rebuild the signature hash preimage from its 11
# components.
COV_CAT_COUNT = 10

# The Script following the Miniscript in its decomposed form, starting with the VERIFY
# of the Miniscript. None stands for the covenant key push.
COV_SCRIPT_PATTERN = (
    [
        OP_VERIFY,
        COV_SIG_PICK_INDEX,
        OP_PICK,
        OP_OVER,
        1,
        OP_LEFT,
        OP_CAT,
        None,
        OP_DUP,
        OP_TOALTSTACK,
        OP_CODESEPARATOR,
        OP_CHECKSIG,
        OP_VERIFY,
    ]
    + [OP_CAT] * COV_CAT_COUNT
    + [OP_SHA256, OP_FROMALTSTACK, OP_CHECKSIGFROMSTACK]
)


def cov_script_code():
    """The script code of a covenant: the part of its Script after the
    OP_CODESEPARATOR."""
    return CScript(
        [OP_CHECKSIGVERIFY]
        + [OP_CAT] * COV_CAT_COUNT
        + [OP_SHA256, OP_FROMALTSTACK, OP_CHECKSIGFROMSTACK]
    )


def matches_pattern(elem, expected):
    if expected is None:
        return is_ecdsa_key_push(elem)
    if isinstance(expected, CScriptOp):
        return isinstance(elem, CScriptOp) and elem == expected
    # A small integer
    return type(elem) is int and elem == expected


class CovenantDescriptor(Descriptor):
    """A covenant descriptor: a P2WSH output committing to a covenant key and a
    Miniscript which may inspect the spending transaction."""

    def __init__(self, pk, ms):
        """Create a covenant descriptor, checking its Script is valid under consensus.

        :param pk: the covenant key, as a DescriptorKey.
        :param ms: the Miniscript, which must be of type B.
        """
        assert isinstance(pk, DescriptorKey) and isinstance(ms, Node)
        try:
            Covenant.check_key(pk)
        except MiniscriptContextError as e:
            raise BadCovDescriptor(f"Invalid covenant key: {e.message}") from e
        free_verify = int(ms.has_free_verify)
        if ms.ops_count_sat is None:
            raise ImpossibleSatisfaction(f"Miniscript '{ms}' can't be satisfied")
        ops_count = ms.ops_count_sat + COV_OPS_COUNT - free_verify
        if ops_count > MAX_OPS_PER_SCRIPT:
            raise ImpossibleSatisfaction(
                f"Covenant Script would execute {ops_count} operations, above the "
                f"maximum of {MAX_OPS_PER_SCRIPT}"
            )
        script_size = ms.script_size + COV_SCRIPT_SIZE - free_verify
        if script_size > MAX_SCRIPT_SIZE:
            raise ScriptSizeTooLarge(
                f"Covenant Script size {script_size} exceeds the maximum of "
                f"{MAX_SCRIPT_SIZE}"
            )
        self.pk = pk
        self.ms = ms

    def from_tree(tree):
        if tree.name != "covwsh" or len(tree.args) != 2:
            raise tree.unexpected("elcovwsh")
        pk = parse_key(tree.args[0])
        ms = parse_miniscript(tree.args[1], Covenant)
        try:
            return CovenantDescriptor(pk, ms)
        except BadCovDescriptor as e:
            raise DescriptorParsingError(e.message) from e

    def parse_cov_components(script):
        """Decode the covenant key and the Miniscript from a covenant Script.

        Raises a BadCovDescriptor if this isn't a covenant Script, and a
        MiniscriptMalformed or a MiniscriptContextError if the Miniscript is invalid.
        """
        assert isinstance(script, CScript)
        elems = decompose_script(script)
        pattern_len = len(COV_SCRIPT_PATTERN)
        if len(elems) <= pattern_len:
            raise BadCovDescriptor()

        suffix = elems[-pattern_len:]
        for elem, expected in zip(suffix, COV_SCRIPT_PATTERN):
            if not matches_pattern(elem, expected):
                raise BadCovDescriptor(
                    f"Unexpected element {elem!r} in covenant Script {script.hex()}"
                )
        pk_push = suffix[COV_SCRIPT_PATTERN.index(None)]

        try:
            pk = DescriptorKey(pk_push)
            ms = parse_script_elems(elems[:-pattern_len], Covenant, {})
        except (DescriptorKeyError, MiniscriptNodeCreationError) as e:
            raise MiniscriptMalformed(
                f"Invalid covenant Script {script.hex()}: {e.message}"
            ) from e
        try:
            Covenant.check_key(pk)
        except MiniscriptContextError as e:
            raise BadCovDescriptor(f"Invalid covenant key: {e.message}") from e
        Covenant.check_global_validity(ms)
        if not ms.p.B:
            raise MiniscriptContextError(
                f"Covenant Miniscript must be of type B, got '{ms.p.type()}': {ms}"
            )
        return pk, ms

    def parse_insane(script):
        """Decode a covenant descriptor from its Script, without safety checks."""
        pk, ms = CovenantDescriptor.parse_cov_components(script)
        return CovenantDescriptor(pk, ms)

    def parse(script):
        """Decode a covenant descriptor from its Script, checking it is safe to use."""
        desc = CovenantDescriptor.parse_insane(script)
        desc.ms.sanity_check(Covenant)
        return desc

    def desc_str(self):
        return f"covwsh({self.pk},{self.ms})"

    @property
    def explicit_script(self):
        return CScript(
            WrapV(self.ms)._script
            + [
                COV_SIG_PICK_INDEX,
                OP_PICK,
                OP_OVER,
                1,
                OP_LEFT,
                OP_CAT,
                self.pk.bytes(),
                OP_DUP,
                OP_TOALTSTACK,
                OP_CODESEPARATOR,
            ]
            + list(cov_script_code())
        )

    @property
    def script_pubkey(self):
        return p2wsh_script(self.explicit_script)

    @property
    def script_size(self):
        return self.ms.script_size + COV_SCRIPT_SIZE - int(self.ms.has_free_verify)

    @property
    def keys(self):
        return [self.pk] + self.ms.keys

    def translate_keys(self, translator):
        desc = copy.copy(self)
        desc.pk = translator.pk(self.pk)
        desc.ms = self.ms.translate_keys(translator)
        return desc

    def sanity_check(self):
        self.ms.sanity_check(Covenant)
        if self.script_size > MAX_STANDARD_P2WSH_SCRIPT_SIZE:
            raise ScriptSizeTooLarge(
                f"Covenant Script size {self.script_size} exceeds the standard maximum "
                f"of {MAX_STANDARD_P2WSH_SCRIPT_SIZE}"
            )

    def cov_satisfaction(self, sat_material):
        """Get the witness elements proving the covenant signature hash: the signature
        followed by the components of the signature hash preimage."""
        items = []
        for index, lookup in enumerate(
            [
                sat_material.lookup_n_version,
                sat_material.lookup_hash_prevouts,
                sat_material.lookup_hash_sequence,
                sat_material.lookup_hash_issuances,
                sat_material.lookup_outpoint,
                sat_material.lookup_script_code,
                sat_material.lookup_value,
                sat_material.lookup_n_sequence,
                sat_material.lookup_outputs,
                sat_material.lookup_n_locktime,
                sat_material.lookup_sighash_type,
            ],
            start=1,
        ):
            item = lookup()
            if item is None:
                raise MissingSighashItem(index)
            items.append(item)
        (
            n_version,
            hash_prevouts,
            hash_sequence,
            hash_issuances,
            outpoint,
            script_code,
            value,
            n_sequence,
            outputs,
            n_locktime,
            sighash_type,
        ) = items

        sig = sat_material.lookup_ecdsa_sig(self.pk.bytes())
        if sig is None:
            raise MissingCovSignature()
        if sig[-1] != sighash_type:
            raise CovenantSighashTypeMismatch()
        logger.debug(f"Satisfying covenant with key '{self.pk}'")

        script_code = bytes(script_code)
        return [
            sig[:-1],
            n_version.to_bytes(4, "little"),
            hash_prevouts,
            hash_sequence,
            hash_issuances,
            outpoint,
            compact_size(script_code) + script_code,
            value,
            n_sequence.to_bytes(4, "little"),
            hash256(b"".join(outputs)),
            n_locktime.to_bytes(4, "little"),
            sighash_type.to_bytes(4, "little"),
        ]

    def _satisfaction(self, sat_material, malleable):
        cov_sat = self.cov_satisfaction(sat_material)
        ms_sat = satisfy_ms(self.ms, sat_material, malleable)
        # The covenant items end up at the bottom of the stack, the Miniscript being
        # executed first.
        witness = cov_sat + ms_sat + [bytes(self.explicit_script)]
        return witness, CScript()

    def max_satisfaction_weight(self):
        script_size = self.script_size
        max_sat_elems = self.ms.max_satisfaction_witness_elements() + COV_ITEMS_COUNT
        max_sat_size = ms_satisfaction_size(self.ms) + COV_MAX_ITEMS_SIZE
        return (
            4
            + varint_len(script_size)
            + script_size
            + varint_len(max_sat_elems)
            + max_sat_size
        )

