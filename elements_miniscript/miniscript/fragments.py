"""
Miniscript AST elements.

Each element correspond to a Bitcoin Script fragment, and has various type properties.
See the Miniscript website for the specification of the type system: https://bitcoin.sipa.be/miniscript/.
"""

import copy

from . import parsing

from ..key import DescriptorKey
from ..utils.hashes import hash160
from ..utils.script import (
    CScript,
    OP_1,
    OP_0,
    OP_ADD,
    OP_BOOLAND,
    OP_BOOLOR,
    OP_CAT,
    OP_DEPTH,
    OP_DUP,
    OP_ELSE,
    OP_ENDIF,
    OP_EQUAL,
    OP_EQUALVERIFY,
    OP_FROMALTSTACK,
    OP_IFDUP,
    OP_IF,
    OP_CHECKLOCKTIMEVERIFY,
    OP_CHECKMULTISIG,
    OP_CHECKMULTISIGVERIFY,
    OP_CHECKSEQUENCEVERIFY,
    OP_CHECKSIG,
    OP_CHECKSIGADD,
    OP_CHECKSIGVERIFY,
    OP_HASH160,
    OP_HASH256,
    OP_NOTIF,
    OP_NUMEQUAL,
    OP_NUMEQUALVERIFY,
    OP_PICK,
    OP_RIPEMD160,
    OP_SHA256,
    OP_SIZE,
    OP_SUB,
    OP_SWAP,
    OP_TOALTSTACK,
    OP_VERIFY,
    OP_0NOTEQUAL,
    script_number,
)

from .context import (
    MAX_PUBKEYS_PER_MULTISIG,
    MAX_PUBKEYS_PER_MULTI_A,
    MAX_SCRIPT_ELEMENT_SIZE,
    Segwitv0,
)
from .errors import MiniscriptAnalysisError, MiniscriptNodeCreationError
from .property import Property
from .satisfaction import ExecutionInfo, Satisfaction


# Threshold for nLockTime: below this value it is interpreted as block number,
# otherwise as UNIX timestamp.
LOCKTIME_THRESHOLD = 500000000  # Tue Nov  5 00:53:20 1985 UTC

# If CTxIn::nSequence encodes a relative lock-time and this flag
# is set, the relative lock-time has units of 512 seconds,
# otherwise it specifies blocks with a granularity of 1.
SEQUENCE_LOCKTIME_TYPE_FLAG = 1 << 22

# Maximum size of a signature push in a witness: a low-S DER-encoded ECDSA signature
# with its sighash type byte, or a 64 bytes Schnorr signature with its sighash type byte.
ECDSA_SIG_SIZE = 1 + 72
SCHNORR_SIG_SIZE = 1 + 65

# The position of the signature hash components read by the introspection fragments
# in a covenant witness, from the bottom of the stack. The covenant signature is at 0.
COV_N_VERSION_POSITION = 1
COV_HASH_OUTPUTS_POSITION = 9

# The opcodes that have a VERIFY counterpart.
VERIFY_OPS = {
    OP_CHECKSIG: OP_CHECKSIGVERIFY,
    OP_CHECKMULTISIG: OP_CHECKMULTISIGVERIFY,
    OP_EQUAL: OP_EQUALVERIFY,
    OP_NUMEQUAL: OP_NUMEQUALVERIFY,
}


def require(condition, message):
    if not condition:
        raise MiniscriptNodeCreationError(message)


def key_len(key):
    """The length of this key once serialized, without having to derive it."""
    if key.is_uncompressed():
        return 65
    return 32 if key.x_only else 33


def script_num_size(n):
    """The size of the push of the number {n} in a Script."""
    if 0 <= n <= 16:
        return 1
    return 1 + len(script_number(n))


def push_size(data_len):
    """The size of the opcode(s) pushing {data_len} bytes in a Script."""
    if data_len < 0x4C:
        return 1
    return 2 if data_len <= 0xFF else 3


def witness_elem_size(data_len):
    """The size of a witness element of {data_len} bytes, with its length prefix."""
    return (1 if data_len < 253 else 3) + data_len


class Node:
    """A Miniscript fragment."""

    # The fragment's type and properties
    p = None
    # List of all sub fragments
    subs = []
    # A list of Script elements, a CScript is created all at once in the script() method.
    _script = []
    # Whether any satisfaction for this fragment require a signature
    needs_sig = None
    # Whether any dissatisfaction for this fragment requires a signature
    is_forced = None
    # Whether this fragment has a unique unconditional satisfaction, and all conditional
    # ones require a signature.
    is_expressive = None
    # Whether for any possible way to satisfy this fragment (may be none), a
    # non-malleable satisfaction exists.
    is_nonmalleable = None
    # Whether this node or any of its subs contains an absolute heightlock
    abs_heightlocks = None
    # Whether this node or any of its subs contains a relative heightlock
    rel_heightlocks = None
    # Whether this node or any of its subs contains an absolute timelock
    abs_timelocks = None
    # Whether this node or any of its subs contains a relative timelock
    rel_timelocks = None
    # Whether this node does not contain a mix of timelock or heightlock of different types.
    # That is, not (abs_heightlocks and rel_heightlocks or abs_timelocks and abs_timelocks)
    no_timelock_mix = None
    # Information about this Miniscript execution (satisfaction cost, etc..)
    exec_info = None
    # Whether the Script of this fragment ends with an opcode which has a VERIFY form.
    has_free_verify = False

    def __init__(self, *args, **kwargs):
        # Needs to be implemented by derived classes.
        raise NotImplementedError

    def from_str(ms_str, ctx=Segwitv0):
        """Parse a Miniscript fragment from its string representation.

        :param ctx: The script context this Miniscript is used under.
        """
        assert isinstance(ms_str, str)
        node = parsing.miniscript_from_str(ms_str, ctx)
        ctx.check_global_consensus_validity(node)
        return node

    def from_script(script, ctx=Segwitv0, pkh_preimages={}):
        """Decode a Miniscript fragment from its Script representation.

        :param ctx: The script context this Script is used under.
        :param pkh_preimages: A mapping from key hash to key, to decode pk_h() fragments
                              with their key. Without it only the hash is known.
        """
        assert isinstance(script, CScript)
        node = parsing.miniscript_from_script(script, ctx, pkh_preimages)
        ctx.check_global_consensus_validity(node)
        return node

    # TODO: have something like BuildScript from Core and get rid of the _script member.
    @property
    def script(self):
        return CScript(self._script)

    @property
    def script_size(self):
        """The size of the Script of this fragment, computed without serializing it."""
        # Needs to be implemented by derived classes.
        raise NotImplementedError

    @property
    def keys(self):
        """Get the list of all keys from this Miniscript, in order of apparition."""
        return self.own_keys() + [key for sub in self.subs for key in sub.keys]

    def own_keys(self):
        """Get the keys of this very fragment, excluding its subs."""
        # Overriden by fragments that actually have keys.
        return []

    def nodes(self):
        """Iterate over this fragment and all its subs, depth-first."""
        yield self
        for sub in self.subs:
            yield from sub.nodes()

    def for_each_key(self, pred):
        """Whether {pred} holds for every key of this Miniscript. Stops at the first
        key for which it does not."""
        return all(pred(key) for key in self.keys)

    def translate_keys(self, translator):
        """Get a copy of this Miniscript with all the keys translated.

        :param translator: an object with a pk(key) method returning the new key and a
                           pkh(hash) method returning the new key hash.
        """
        node = copy.copy(self)
        node.subs = [sub.translate_keys(translator) for sub in self.subs]
        node._translate_own_keys(translator)
        return node

    def _translate_own_keys(self, translator):
        # Overriden by fragments that actually have keys.
        pass

    @property
    def ops_count_sat(self):
        """The maximum number of executed OPs when satisfying, None if unsatisfiable."""
        if self.exec_info.sat_elems is None:
            return None
        return self.exec_info.ops_count

    def max_satisfaction_size(self):
        """The maximum size in bytes of the witness satisfying this Miniscript, None if
        it can't be satisfied."""
        return self.exec_info.sat_size

    def max_satisfaction_witness_elements(self):
        """The maximum number of witness elements to satisfy this Miniscript, including
        the witness Script itself. None if it can't be satisfied."""
        if self.exec_info.sat_elems is None:
            return None
        return self.exec_info.sat_elems + 1

    def sanity_check(self, ctx=Segwitv0):
        """Check this Miniscript is safe to use as a spending policy under {ctx}.

        Raises a MiniscriptAnalysisError if a spending path does not need a signature,
        if the Miniscript is malleable, exceeds the standard resource limits, contains
        the same key twice or mixes timelock types.
        """
        if not self.needs_sig:
            raise MiniscriptAnalysisError(
                f"Miniscript has a spending path not requiring a signature: {self}"
            )
        if not self.is_nonmalleable:
            raise MiniscriptAnalysisError(f"Miniscript is malleable: {self}")
        ctx.check_global_validity(self)
        keys = [str(k) for k in self.keys]
        if len(set(keys)) != len(keys):
            raise MiniscriptAnalysisError(f"Miniscript contains repeated keys: {self}")
        if not self.no_timelock_mix:
            raise MiniscriptAnalysisError(
                f"Miniscript mixes height and time based timelocks: {self}"
            )

    def satisfy(self, sat_material):
        """Get the witness of the smallest non-malleable satisfaction for this fragment,
        if one exists.

        :param sat_material: a SatisfactionMaterial containing available data to satisfy
                             challenges.
        """
        sat = self.satisfaction(sat_material)
        return sat.witness

    def satisfy_malleable(self, sat_material):
        """Get the witness of the smallest satisfaction for this fragment, if one exists,
        not caring about the possibility for a third party to malleate it."""
        mall_material = copy.copy(sat_material)
        mall_material.malleable = True
        return self.satisfy(mall_material)

    def satisfaction(self, sat_material):
        """Get the satisfaction for this fragment.

        :param sat_material: a SatisfactionMaterial containing available data to satisfy
                             challenges.
        """
        # Needs to be implemented by derived classes.
        raise NotImplementedError

    def dissatisfaction(self):
        """Get the dissatisfaction for this fragment."""
        # Needs to be implemented by derived classes.
        raise NotImplementedError


class Just0(Node):
    def __init__(self):

        self._script = [OP_0]

        self.p = Property("Bzud")
        self.needs_sig = False
        self.is_forced = False
        self.is_expressive = True
        self.is_nonmalleable = True
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True
        self.exec_info = ExecutionInfo(0, 0, None, 0)

    @property
    def script_size(self):
        return 1

    def satisfaction(self, sat_material):
        return Satisfaction.unavailable()

    def dissatisfaction(self):
        return Satisfaction(witness=[])

    def __repr__(self):
        return "0"


class Just1(Node):
    def __init__(self):

        self._script = [OP_1]

        self.p = Property("Bzu")
        self.needs_sig = False
        self.is_forced = True  # No dissat
        self.is_expressive = False  # No dissat
        self.is_nonmalleable = True  # FIXME: how comes? Standardness rules?
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True
        self.exec_info = ExecutionInfo(0, 0, 0, None)

    @property
    def script_size(self):
        return 1

    def satisfaction(self, sat_material):
        return Satisfaction(witness=[], malleable=sat_material.malleable)

    def dissatisfaction(self):
        return Satisfaction.unavailable()

    def __repr__(self):
        return "1"


class PkNode(Node):
    """A virtual class for nodes containing a single public key.

    Should not be instanced directly, use Pk() or Pkh().
    """

    def __init__(self, pubkey, is_taproot=False):
        self.is_taproot = is_taproot

        # The key may be unknown, see Pkh.
        if pubkey is None:
            self.pubkey = None
        elif isinstance(pubkey, (bytes, str)):
            self.pubkey = DescriptorKey(pubkey, x_only=is_taproot)
        elif isinstance(pubkey, DescriptorKey):
            self.pubkey = pubkey
        else:
            raise MiniscriptNodeCreationError("Invalid public key")

        self.needs_sig = True  # FIXME: think about having it in 'c:' instead
        self.is_forced = False
        self.is_expressive = True
        self.is_nonmalleable = True
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True

    def own_keys(self):
        return [self.pubkey]

    def _translate_own_keys(self, translator):
        self.pubkey = translator.pk(self.pubkey)


class Pk(PkNode):
    def __init__(self, pubkey, is_taproot=False):
        PkNode.__init__(self, pubkey, is_taproot)

        self.p = Property("Konud")
        self.exec_info = ExecutionInfo(0, 0, 0, 0)

    @property
    def _script(self):
        return [self.pubkey.bytes()]

    @property
    def script_size(self):
        return 1 + key_len(self.pubkey)

    def satisfaction(self, sat_material):
        sig = sat_material.lookup_ecdsa_sig(self.pubkey.bytes())
        if sig is None:
            return Satisfaction.unavailable()
        return Satisfaction([sig], has_sig=True, malleable=sat_material.malleable)

    def dissatisfaction(self):
        return Satisfaction(witness=[b""])

    def __repr__(self):
        return f"pk_k({self.pubkey})"


class Pkh(PkNode):
    """A pk_h() fragment. The key may not be known when decoded from Script, in which
    case only its hash is."""

    def __init__(self, pk_or_pkh, is_taproot=False):
        # The hash of the key, only set if the key itself is unknown.
        self.key_hash = None
        if isinstance(pk_or_pkh, str) and len(pk_or_pkh) == 40:
            try:
                pk_or_pkh = bytes.fromhex(pk_or_pkh)
            except ValueError:
                raise MiniscriptNodeCreationError(f"Invalid key hash '{pk_or_pkh}'")
        if isinstance(pk_or_pkh, bytes) and len(pk_or_pkh) == 20:
            PkNode.__init__(self, None, is_taproot)
            self.key_hash = pk_or_pkh
        else:
            PkNode.__init__(self, pk_or_pkh, is_taproot)

        self.p = Property("Knud")
        if self.pubkey is not None:
            pk_size = 1 + key_len(self.pubkey)
        else:
            pk_size = 1 + (32 if is_taproot else 33)
        self.exec_info = ExecutionInfo(3, 0, 1, 1, pk_size, pk_size)

    @property
    def _script(self):
        return [OP_DUP, OP_HASH160, self.pk_hash(), OP_EQUALVERIFY]

    @property
    def script_size(self):
        return 3 + 21

    def own_keys(self):
        return [self.pubkey] if self.pubkey is not None else []

    def _translate_own_keys(self, translator):
        if self.pubkey is not None:
            self.pubkey = translator.pk(self.pubkey)
        else:
            self.key_hash = translator.pkh(self.key_hash)

    def satisfaction(self, sat_material):
        if self.pubkey is not None:
            pubkey = self.pubkey.bytes()
            sig = sat_material.lookup_ecdsa_sig(pubkey)
        else:
            pubkey, sig = sat_material.lookup_pkh(self.pk_hash()) or (None, None)
        if sig is None:
            return Satisfaction.unavailable()
        return Satisfaction(
            witness=[sig, pubkey], has_sig=True, malleable=sat_material.malleable
        )

    def dissatisfaction(self):
        if self.pubkey is None:
            return Satisfaction.unavailable()
        return Satisfaction(witness=[b"", self.pubkey.bytes()])

    def key_str(self):
        if self.pubkey is not None:
            return str(self.pubkey)
        return self.pk_hash().hex()

    def __repr__(self):
        return f"pk_h({self.key_str()})"

    def pk_hash(self):
        if self.pubkey is None:
            return bytes(self.key_hash)
        return hash160(self.pubkey.bytes())


class Older(Node):
    def __init__(self, value):
        require(0 < value < 2 ** 31, f"Invalid relative timelock value {value}")

        self.value = value
        self._script = [self.value, OP_CHECKSEQUENCEVERIFY]

        self.p = Property("Bz")
        self.needs_sig = False
        self.is_forced = True
        self.is_expressive = False  # No dissat
        self.is_nonmalleable = True
        self.rel_timelocks = bool(value & SEQUENCE_LOCKTIME_TYPE_FLAG)
        self.rel_heightlocks = not self.rel_timelocks
        self.abs_heightlocks = False
        self.abs_timelocks = False
        self.no_timelock_mix = True
        self.exec_info = ExecutionInfo(1, 0, 0, None)

    @property
    def script_size(self):
        return script_num_size(self.value) + 1

    def satisfaction(self, sat_material):
        if not sat_material.check_older(self.value):
            return Satisfaction.unavailable()
        return Satisfaction(witness=[], malleable=sat_material.malleable)

    def dissatisfaction(self):
        return Satisfaction.unavailable()

    def __repr__(self):
        return f"older({self.value})"


class After(Node):
    def __init__(self, value):
        require(0 < value < 2 ** 31, f"Invalid absolute timelock value {value}")

        self.value = value
        self._script = [self.value, OP_CHECKLOCKTIMEVERIFY]

        self.p = Property("Bz")
        self.needs_sig = False
        self.is_forced = True
        self.is_expressive = False  # No dissat
        self.is_nonmalleable = True
        self.abs_heightlocks = value < LOCKTIME_THRESHOLD
        self.abs_timelocks = not self.abs_heightlocks
        self.rel_heightlocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True
        self.exec_info = ExecutionInfo(1, 0, 0, None)

    @property
    def script_size(self):
        return script_num_size(self.value) + 1

    def satisfaction(self, sat_material):
        if not sat_material.check_after(self.value):
            return Satisfaction.unavailable()
        return Satisfaction(witness=[], malleable=sat_material.malleable)

    def dissatisfaction(self):
        return Satisfaction.unavailable()

    def __repr__(self):
        return f"after({self.value})"


class HashNode(Node):
    """A virtual class for fragments with hashlock semantics.

    Should not be instanced directly, use concrete fragments instead.
    """

    has_free_verify = True

    def __init__(self, digest, hash_op, digest_len):
        require(
            isinstance(digest, bytes) and len(digest) == digest_len,
            f"Invalid digest, expected {digest_len} bytes",
        )

        self.digest = digest
        self._script = [OP_SIZE, 32, OP_EQUALVERIFY, hash_op, digest, OP_EQUAL]

        self.p = Property("Bonud")
        self.needs_sig = False
        self.is_forced = False
        self.is_expressive = False
        self.is_nonmalleable = True
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True
        # The satisfaction is a single 32 bytes preimage.
        self.exec_info = ExecutionInfo(4, 0, 1, None, sat_size=1 + 32)

    @property
    def script_size(self):
        return 6 + 1 + len(self.digest)

    def satisfaction(self, sat_material):
        preimage = sat_material.lookup_preimage(self.digest)
        if preimage is None:
            return Satisfaction.unavailable()
        return Satisfaction(witness=[preimage], malleable=sat_material.malleable)

    def dissatisfaction(self):
        # Any 32 bytes but the preimage would do, but such a dissatisfaction is
        # malleable and therefore never produced.
        return Satisfaction.unavailable()


class Sha256(HashNode):
    def __init__(self, digest):
        HashNode.__init__(self, digest, OP_SHA256, 32)

    def __repr__(self):
        return f"sha256({self.digest.hex()})"


class Hash256(HashNode):
    def __init__(self, digest):
        HashNode.__init__(self, digest, OP_HASH256, 32)

    def __repr__(self):
        return f"hash256({self.digest.hex()})"


class Ripemd160(HashNode):
    def __init__(self, digest):
        HashNode.__init__(self, digest, OP_RIPEMD160, 20)

    def __repr__(self):
        return f"ripemd160({self.digest.hex()})"


class Hash160(HashNode):
    def __init__(self, digest):
        HashNode.__init__(self, digest, OP_HASH160, 20)

    def __repr__(self):
        return f"hash160({self.digest.hex()})"


class IntrospectionNode(Node):
    """A virtual class for the fragments reading a component of the signature hash of
    the spending transaction. They may only be used under the Covenant context.

    The witness of a covenant starts with the covenant signature followed by the
    signature hash components, so each of them lies at a fixed position from the
    bottom of the stack whatever the Miniscript consumed or pushed.
    """

    has_free_verify = True

    def __init__(self):
        self.needs_sig = False
        self.is_forced = True  # No dissat
        self.is_expressive = False  # No dissat
        self.is_nonmalleable = True
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True

    def dissatisfaction(self):
        return Satisfaction.unavailable()


def pick_cov_item(position):
    """The Script copying on top of the stack the covenant item at {position} from
    the bottom."""
    return [OP_DEPTH, position + 1, OP_SUB, OP_PICK]


class VerEq(IntrospectionNode):
    """ver_eq(n): the version of the spending transaction is n."""

    def __init__(self, version):
        require(0 <= version < 2 ** 32, f"Invalid transaction version {version}")
        IntrospectionNode.__init__(self)

        self.version = version
        self._script = pick_cov_item(COV_N_VERSION_POSITION) + [
            version.to_bytes(4, "little"),
            OP_EQUAL,
        ]

        self.p = Property("Bzu")
        self.exec_info = ExecutionInfo(4, 0, 0, None)

    @property
    def script_size(self):
        # OP_DEPTH <2> OP_SUB OP_PICK <version> OP_EQUAL
        return 4 + 1 + 4 + 1

    def satisfaction(self, sat_material):
        if sat_material.lookup_n_version() != self.version:
            return Satisfaction.unavailable()
        return Satisfaction(witness=[], malleable=sat_material.malleable)

    def __repr__(self):
        return f"ver_eq({self.version})"


class OutputsPref(IntrospectionNode):
    """outputs_pref(P): the serialized outputs of the spending transaction start with P.

    Satisfied by the rest of the serialized outputs. Appended to P and hashed, they
    must give the hashOutputs component of the signature hash.
    """

    def __init__(self, prefix):
        require(
            isinstance(prefix, bytes) and 0 < len(prefix) <= MAX_SCRIPT_ELEMENT_SIZE,
            f"Outputs prefix must be between 1 and {MAX_SCRIPT_ELEMENT_SIZE} bytes",
        )
        IntrospectionNode.__init__(self)

        self.prefix = prefix
        self._script = (
            [prefix, OP_SWAP, OP_CAT, OP_HASH256]
            + pick_cov_item(COV_HASH_OUTPUTS_POSITION)
            + [OP_EQUAL]
        )

        self.p = Property("Bou")
        # The concatenation may not be larger than a stack element.
        max_suffix_len = MAX_SCRIPT_ELEMENT_SIZE - len(prefix)
        self.exec_info = ExecutionInfo(
            7, 0, 1, None, sat_size=witness_elem_size(max_suffix_len)
        )

    @property
    def script_size(self):
        return push_size(len(self.prefix)) + len(self.prefix) + 8

    def satisfaction(self, sat_material):
        outputs = sat_material.lookup_outputs()
        if outputs is None:
            return Satisfaction.unavailable()
        outputs = b"".join(outputs)
        if not outputs.startswith(self.prefix) or len(outputs) > MAX_SCRIPT_ELEMENT_SIZE:
            return Satisfaction.unavailable()
        return Satisfaction(
            witness=[outputs[len(self.prefix):]], malleable=sat_material.malleable
        )

    def __repr__(self):
        return f"outputs_pref({self.prefix.hex()})"


class Multi(Node):
    has_free_verify = True

    def __init__(self, k, keys):
        require(
            1 <= len(keys) <= MAX_PUBKEYS_PER_MULTISIG,
            f"multi() takes between 1 and {MAX_PUBKEYS_PER_MULTISIG} keys",
        )
        require(1 <= k <= len(keys), f"Invalid threshold {k} for {len(keys)} keys")
        assert all(isinstance(k, DescriptorKey) for k in keys)

        self.k = k
        self.pubkeys = keys

        self.p = Property("Bndu")
        self.needs_sig = True
        self.is_forced = False
        self.is_expressive = True
        self.is_nonmalleable = True
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True
        # Satisfied with the dummy element and k signatures, dissatisfied with k + 1
        # empty vectors.
        self.exec_info = ExecutionInfo(
            1, len(keys), 1 + k, 1 + k, 1 + ECDSA_SIG_SIZE * k, 1 + k
        )

    def own_keys(self):
        return self.pubkeys

    def _translate_own_keys(self, translator):
        self.pubkeys = [translator.pk(key) for key in self.pubkeys]

    @property
    def _script(self):
        return [
            self.k,
            *[k.bytes() for k in self.pubkeys],
            len(self.pubkeys),
            OP_CHECKMULTISIG,
        ]

    @property
    def script_size(self):
        return (
            script_num_size(self.k)
            + sum(1 + key_len(k) for k in self.pubkeys)
            + script_num_size(len(self.pubkeys))
            + 1
        )

    def satisfaction(self, sat_material):
        sigs = []
        for key in self.pubkeys:
            sig = sat_material.lookup_ecdsa_sig(key.bytes())
            if sig is not None:
                assert isinstance(sig, bytes)
                sigs.append(sig)
            if len(sigs) == self.k:
                break
        if len(sigs) < self.k:
            return Satisfaction.unavailable()
        return Satisfaction(
            witness=[b""] + sigs, has_sig=True, malleable=sat_material.malleable
        )

    def dissatisfaction(self):
        return Satisfaction(witness=[b""] * (self.k + 1))

    def __repr__(self):
        return f"multi({','.join([str(self.k)] + [str(k) for k in self.pubkeys])})"


class MultiA(Node):
    """The Tapscript k-of-n multisig: <pk_1> CHECKSIG (<pk_i> CHECKSIGADD)* <k> NUMEQUAL"""

    has_free_verify = True

    def __init__(self, k, keys):
        require(
            1 <= len(keys) <= MAX_PUBKEYS_PER_MULTI_A,
            f"multi_a() takes between 1 and {MAX_PUBKEYS_PER_MULTI_A} keys",
        )
        require(1 <= k <= len(keys), f"Invalid threshold {k} for {len(keys)} keys")
        assert all(isinstance(k, DescriptorKey) for k in keys)

        self.k = k
        self.pubkeys = keys

        self.p = Property("Bdu")
        self.needs_sig = True
        self.is_forced = False
        self.is_expressive = True
        self.is_nonmalleable = True
        self.abs_heightlocks = False
        self.rel_heightlocks = False
        self.abs_timelocks = False
        self.rel_timelocks = False
        self.no_timelock_mix = True
        # One stack element per key, either a signature or an empty vector.
        n = len(keys)
        self.exec_info = ExecutionInfo(
            n + 1, 0, n, n, SCHNORR_SIG_SIZE * k + (n - k), n
        )

    def own_keys(self):
        return self.pubkeys

    def _translate_own_keys(self, translator):
        self.pubkeys = [translator.pk(key) for key in self.pubkeys]

    @property
    def _script(self):
        script = [self.pubkeys[0].bytes(), OP_CHECKSIG]
        for key in self.pubkeys[1:]:
            script += [key.bytes(), OP_CHECKSIGADD]
        return script + [self.k, OP_NUMEQUAL]

    @property
    def script_size(self):
        return (
            sum(1 + key_len(k) + 1 for k in self.pubkeys)
            + script_num_size(self.k)
            + 1
        )

    def satisfaction(self, sat_material):
        # The first key's signature is checked first, so must be on top of the stack.
        witness, n_sigs = [], 0
        for key in self.pubkeys:
            sig = None
            if n_sigs < self.k:
                sig = sat_material.lookup_ecdsa_sig(key.bytes())
            if sig is not None:
                n_sigs += 1
            witness.insert(0, sig if sig is not None else b"")
        if n_sigs < self.k:
            return Satisfaction.unavailable()
        return Satisfaction(witness, has_sig=True, malleable=sat_material.malleable)

    def dissatisfaction(self):
        return Satisfaction(witness=[b""] * len(self.pubkeys))

    def __repr__(self):
        return f"multi_a({','.join([str(self.k)] + [str(k) for k in self.pubkeys])})"


class AndV(Node):
    def __init__(self, sub_x, sub_y):
        require(sub_x.p.V, "and_v: X must be of type V")
        require(sub_y.p.has_any("BKV"), "and_v: Y must be of type B, K or V")

        self.subs = [sub_x, sub_y]

        self.p = Property(
            sub_y.p.type()
            + ("z" if sub_x.p.z and sub_y.p.z else "")
            + ("o" if sub_x.p.z and sub_y.p.o or sub_x.p.o and sub_y.p.z else "")
            + ("n" if sub_x.p.n or sub_x.p.z and sub_y.p.n else "")
            + ("u" if sub_y.p.u else "")
        )
        self.needs_sig = any(sub.needs_sig for sub in self.subs)
        self.is_forced = any(sub.needs_sig for sub in self.subs)
        self.is_expressive = False  # Not 'd'
        self.is_nonmalleable = all(sub.is_nonmalleable for sub in self.subs)
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = not (
            self.abs_heightlocks
            and self.abs_timelocks
            or self.rel_heightlocks
            and self.rel_timelocks
        )

    @property
    def _script(self):
        return sum((sub._script for sub in self.subs), start=[])

    @property
    def script_size(self):
        return sum(sub.script_size for sub in self.subs)

    @property
    def has_free_verify(self):
        return self.subs[1].has_free_verify

    @property
    def exec_info(self):
        exec_info = ExecutionInfo.from_concat(
            self.subs[0].exec_info, self.subs[1].exec_info
        )
        exec_info.set_undissatisfiable()  # it's V.
        return exec_info

    def satisfaction(self, sat_material):
        return Satisfaction.from_concat(sat_material, *self.subs)

    def dissatisfaction(self):
        return Satisfaction.unavailable()  # it's V.

    def __repr__(self):
        return f"and_v({','.join(map(str, self.subs))})"


class AndB(Node):
    def __init__(self, sub_x, sub_y):
        require(sub_x.p.B and sub_y.p.W, "and_b: X must be of type B and Y of type W")

        self.subs = [sub_x, sub_y]

        self.p = Property(
            "Bu"
            + ("z" if sub_x.p.z and sub_y.p.z else "")
            + ("o" if sub_x.p.z and sub_y.p.o or sub_x.p.o and sub_y.p.z else "")
            + ("n" if sub_x.p.n or sub_x.p.z and sub_y.p.n else "")
            + ("d" if sub_x.p.d and sub_y.p.d else "")
            + ("u" if sub_y.p.u else "")
        )
        self.needs_sig = any(sub.needs_sig for sub in self.subs)
        self.is_forced = (
            sub_x.is_forced
            and sub_y.is_forced
            or any(sub.is_forced and sub.needs_sig for sub in self.subs)
        )
        self.is_expressive = all(sub.is_forced and sub.needs_sig for sub in self.subs)
        self.is_nonmalleable = all(sub.is_nonmalleable for sub in self.subs)
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = not (
            self.abs_heightlocks
            and self.abs_timelocks
            or self.rel_heightlocks
            and self.rel_timelocks
        )

    @property
    def _script(self):
        return sum((sub._script for sub in self.subs), start=[]) + [OP_BOOLAND]

    @property
    def script_size(self):
        return sum(sub.script_size for sub in self.subs) + 1

    @property
    def exec_info(self):
        return ExecutionInfo.from_concat(
            self.subs[0].exec_info, self.subs[1].exec_info, ops_count=1
        )

    def satisfaction(self, sat_material):
        return Satisfaction.from_concat(sat_material, self.subs[0], self.subs[1])

    def dissatisfaction(self):
        return self.subs[1].dissatisfaction() + self.subs[0].dissatisfaction()

    def __repr__(self):
        return f"and_b({','.join(map(str, self.subs))})"


class OrB(Node):
    def __init__(self, sub_x, sub_z):
        require(sub_x.p.has_all("Bd"), "or_b: X must be of type Bd")
        require(sub_z.p.has_all("Wd"), "or_b: Z must be of type Wd")

        self.subs = [sub_x, sub_z]

        self.p = Property(
            "Bdu"
            + ("z" if sub_x.p.z and sub_z.p.z else "")
            + ("o" if sub_x.p.z and sub_z.p.o or sub_x.p.o and sub_z.p.z else "")
        )
        self.needs_sig = all(sub.needs_sig for sub in self.subs)
        self.is_forced = False  # Both subs are 'd'
        self.is_expressive = all(sub.is_expressive for sub in self.subs)
        self.is_nonmalleable = all(
            sub.is_nonmalleable and sub.is_expressive for sub in self.subs
        ) and any(sub.needs_sig for sub in self.subs)
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in self.subs)

    @property
    def _script(self):
        return sum((sub._script for sub in self.subs), start=[]) + [OP_BOOLOR]

    @property
    def script_size(self):
        return sum(sub.script_size for sub in self.subs) + 1

    @property
    def exec_info(self):
        return ExecutionInfo.from_concat(
            self.subs[0].exec_info,
            self.subs[1].exec_info,
            ops_count=1,
            disjunction=True,
        )

    def satisfaction(self, sat_material):
        return Satisfaction.from_concat(
            sat_material, self.subs[0], self.subs[1], disjunction=True
        )

    def dissatisfaction(self):
        return self.subs[1].dissatisfaction() + self.subs[0].dissatisfaction()

    def __repr__(self):
        return f"or_b({','.join(map(str, self.subs))})"


class OrC(Node):
    def __init__(self, sub_x, sub_z):
        require(
            sub_x.p.has_all("Bdu") and sub_z.p.V,
            "or_c: X must be of type Bdu and Z of type V",
        )

        self.subs = [sub_x, sub_z]

        self.p = Property(
            "V"
            + ("z" if sub_x.p.z and sub_z.p.z else "")
            + ("o" if sub_x.p.o and sub_z.p.z else "")
        )
        self.needs_sig = all(sub.needs_sig for sub in self.subs)
        self.is_forced = True  # Because sub_z is 'V'
        self.is_expressive = False  # V
        self.is_nonmalleable = (
            all(sub.is_nonmalleable for sub in self.subs)
            and any(sub.needs_sig for sub in self.subs)
            and sub_x.is_expressive
        )
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in self.subs)

    @property
    def _script(self):
        return self.subs[0]._script + [OP_NOTIF] + self.subs[1]._script + [OP_ENDIF]

    @property
    def script_size(self):
        return sum(sub.script_size for sub in self.subs) + 2

    @property
    def exec_info(self):
        exec_info = ExecutionInfo.from_or_uneven(
            self.subs[0].exec_info, self.subs[1].exec_info, ops_count=2
        )
        exec_info.set_undissatisfiable()  # it's V.
        return exec_info

    def satisfaction(self, sat_material):
        return Satisfaction.from_or_uneven(sat_material, self.subs[0], self.subs[1])

    def dissatisfaction(self):
        return Satisfaction.unavailable()  # it's V.

    def __repr__(self):
        return f"or_c({','.join(map(str, self.subs))})"


class OrD(Node):
    def __init__(self, sub_x, sub_z):
        require(sub_x.p.has_all("Bdu"), "or_d: X must be of type Bdu")
        require(sub_z.p.B, "or_d: Z must be of type B")

        self.subs = [sub_x, sub_z]

        self.p = Property(
            "B"
            + ("z" if sub_x.p.z and sub_z.p.z else "")
            + ("o" if sub_x.p.o and sub_z.p.z else "")
            + ("d" if sub_z.p.d else "")
            + ("u" if sub_z.p.u else "")
        )
        self.needs_sig = all(sub.needs_sig for sub in self.subs)
        self.is_forced = all(sub.is_forced for sub in self.subs)
        self.is_expressive = all(sub.is_expressive for sub in self.subs)
        self.is_nonmalleable = (
            all(sub.is_nonmalleable for sub in self.subs)
            and any(sub.needs_sig for sub in self.subs)
            and sub_x.is_expressive
        )
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in self.subs)

    @property
    def _script(self):
        return (
            self.subs[0]._script
            + [OP_IFDUP, OP_NOTIF]
            + self.subs[1]._script
            + [OP_ENDIF]
        )

    @property
    def script_size(self):
        return sum(sub.script_size for sub in self.subs) + 3

    @property
    def exec_info(self):
        return ExecutionInfo.from_or_uneven(
            self.subs[0].exec_info, self.subs[1].exec_info, ops_count=3
        )

    def satisfaction(self, sat_material):
        return Satisfaction.from_or_uneven(sat_material, self.subs[0], self.subs[1])

    def dissatisfaction(self):
        return self.subs[1].dissatisfaction() + self.subs[0].dissatisfaction()

    def __repr__(self):
        return f"or_d({','.join(map(str, self.subs))})"


class OrI(Node):
    def __init__(self, sub_x, sub_z):
        require(
            sub_x.p.type() == sub_z.p.type() and sub_x.p.has_any("BKV"),
            "or_i: X and Z must be of the same type, B K or V",
        )

        self.subs = [sub_x, sub_z]

        self.p = Property(
            sub_x.p.type()
            + ("o" if sub_x.p.z and sub_z.p.z else "")
            + ("d" if sub_x.p.d or sub_z.p.d else "")
            + ("u" if sub_x.p.u and sub_z.p.u else "")
        )
        self.needs_sig = all(sub.needs_sig for sub in self.subs)
        self.is_forced = all(sub.is_forced for sub in self.subs)
        self.is_expressive = (
            sub_x.is_expressive
            and sub_z.is_forced
            or sub_x.is_forced
            and sub_z.is_expressive
        )
        self.is_nonmalleable = all(sub.is_nonmalleable for sub in self.subs) and any(
            sub.needs_sig for sub in self.subs
        )
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in self.subs)

    @property
    def _script(self):
        return (
            [OP_IF]
            + self.subs[0]._script
            + [OP_ELSE]
            + self.subs[1]._script
            + [OP_ENDIF]
        )

    @property
    def script_size(self):
        return sum(sub.script_size for sub in self.subs) + 3

    @property
    def exec_info(self):
        return ExecutionInfo.from_or_even(
            self.subs[0].exec_info, self.subs[1].exec_info, ops_count=3
        )

    def satisfaction(self, sat_material):
        return (self.subs[0].satisfaction(sat_material) + Satisfaction([b"\x01"])) | (
            self.subs[1].satisfaction(sat_material) + Satisfaction([b""])
        )

    def dissatisfaction(self):
        return (self.subs[0].dissatisfaction() + Satisfaction(witness=[b"\x01"])) | (
            self.subs[1].dissatisfaction() + Satisfaction(witness=[b""])
        )

    def __repr__(self):
        return f"or_i({','.join(map(str, self.subs))})"


class AndOr(Node):
    def __init__(self, sub_x, sub_y, sub_z):
        require(sub_x.p.has_all("Bdu"), "andor: X must be of type Bdu")
        require(
            sub_y.p.type() == sub_z.p.type() and sub_y.p.has_any("BKV"),
            "andor: Y and Z must be of the same type, B K or V",
        )

        self.subs = [sub_x, sub_y, sub_z]

        self.p = Property(
            sub_y.p.type()
            + ("z" if sub_x.p.z and sub_y.p.z and sub_z.p.z else "")
            + (
                "o"
                if sub_x.p.z
                and sub_y.p.o
                and sub_z.p.o
                or sub_x.p.o
                and sub_y.p.z
                and sub_z.p.z
                else ""
            )
            + ("d" if sub_z.p.d else "")
            + ("u" if sub_y.p.u and sub_z.p.u else "")
        )
        self.needs_sig = sub_x.needs_sig and (sub_y.needs_sig or sub_z.needs_sig)
        self.is_forced = sub_z.is_forced and (sub_x.needs_sig or sub_y.is_forced)
        self.is_expressive = (
            sub_x.is_expressive
            and sub_z.is_expressive
            and (sub_x.needs_sig or sub_y.is_forced)
        )
        self.is_nonmalleable = (
            all(sub.is_nonmalleable for sub in self.subs)
            and any(sub.needs_sig for sub in self.subs)
            and sub_x.is_expressive
        )
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in self.subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in self.subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in self.subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in self.subs)
        # X and Y, or Z. So we have a mix if any contain a timelock mix, or
        # there is a mix between X and Y.
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in self.subs) and not (
            any(sub.rel_timelocks for sub in [sub_x, sub_y])
            and any(sub.rel_heightlocks for sub in [sub_x, sub_y])
            or any(sub.abs_timelocks for sub in [sub_x, sub_y])
            and any(sub.abs_heightlocks for sub in [sub_x, sub_y])
        )

    @property
    def _script(self):
        return (
            self.subs[0]._script
            + [OP_NOTIF]
            + self.subs[2]._script
            + [OP_ELSE]
            + self.subs[1]._script
            + [OP_ENDIF]
        )

    @property
    def script_size(self):
        return sum(sub.script_size for sub in self.subs) + 3

    @property
    def exec_info(self):
        return ExecutionInfo.from_andor_uneven(
            self.subs[0].exec_info,
            self.subs[1].exec_info,
            self.subs[2].exec_info,
            ops_count=3,
        )

    def satisfaction(self, sat_material):
        # (A and B) or (!A and C)
        return (
            self.subs[1].satisfaction(sat_material)
            + self.subs[0].satisfaction(sat_material)
        ) | (self.subs[2].satisfaction(sat_material) + self.subs[0].dissatisfaction())

    def dissatisfaction(self):
        # Dissatisfy X and Z
        return self.subs[2].dissatisfaction() + self.subs[0].dissatisfaction()

    def __repr__(self):
        return f"andor({','.join(map(str, self.subs))})"


class AndN(AndOr):
    def __init__(self, sub_x, sub_y):
        AndOr.__init__(self, sub_x, sub_y, Just0())

    def __repr__(self):
        return f"and_n({self.subs[0]},{self.subs[1]})"


class Thresh(Node):
    has_free_verify = True

    def __init__(self, k, subs):
        n = len(subs)
        require(1 <= k <= n, f"Invalid threshold {k} for {n} subs")
        require(subs[0].p.has_all("Bdu"), "thresh: first sub must be of type Bdu")
        require(
            all(sub.p.has_all("Wdu") for sub in subs[1:]),
            "thresh: all subs but the first must be of type Wdu",
        )

        self.k = k
        self.subs = subs

        all_z = subs[0].p.z
        all_z_but_one_odu = False
        all_e = subs[0].is_expressive
        s_count = int(subs[0].needs_sig)
        if not all_z and subs[0].p.has_all("odu"):
            all_z_but_one_odu = True
        for sub in subs[1:]:
            if not sub.p.z:
                if all_z_but_one_odu:
                    # Fails "all 'z' but one"
                    all_z_but_one_odu = False
                if all_z and sub.p.has_all("odu"):
                    # They were all 'z' up to now.
                    all_z_but_one_odu = True
                all_z = False
            all_e = all_e and sub.is_expressive
            if sub.needs_sig:
                s_count += 1

        self.p = Property(
            "Bdu" + ("z" if all_z else "") + ("o" if all_z_but_one_odu else "")
        )
        self.needs_sig = s_count >= n - k
        self.is_forced = False  # All subs need to be 'd'
        self.is_expressive = all_e and s_count == n
        self.is_nonmalleable = (
            all(sub.is_nonmalleable for sub in subs) and all_e and s_count >= n - k
        )
        self.abs_heightlocks = any(sub.abs_heightlocks for sub in subs)
        self.rel_heightlocks = any(sub.rel_heightlocks for sub in subs)
        self.abs_timelocks = any(sub.abs_timelocks for sub in subs)
        self.rel_timelocks = any(sub.rel_timelocks for sub in subs)
        # With k == 1 a single sub is ever satisfied, so only check each sub.
        self.no_timelock_mix = all(sub.no_timelock_mix for sub in subs)
        if k > 1:
            self.no_timelock_mix = not (
                self.abs_heightlocks
                and self.abs_timelocks
                or self.rel_heightlocks
                and self.rel_timelocks
            )

    @property
    def _script(self):
        return (
            self.subs[0]._script
            + sum(((sub._script + [OP_ADD]) for sub in self.subs[1:]), start=[])
            + [self.k, OP_EQUAL]
        )

    @property
    def script_size(self):
        return (
            sum(sub.script_size for sub in self.subs)
            + len(self.subs)
            - 1
            + script_num_size(self.k)
            + 1
        )

    @property
    def exec_info(self):
        return ExecutionInfo.from_thresh(self.k, [sub.exec_info for sub in self.subs])

    def satisfaction(self, sat_material):
        return Satisfaction.from_thresh(sat_material, self.k, self.subs)

    def dissatisfaction(self):
        return sum(
            [sub.dissatisfaction() for sub in self.subs], start=Satisfaction(witness=[])
        )

    def __repr__(self):
        return f"thresh({self.k},{','.join(map(str, self.subs))})"


class WrapperNode(Node):
    """A virtual base class for wrappers.

    Don't instanciate it directly, use concret wrapper fragments instead.
    """

    # The character to prefix the sub with in the string representation.
    tag = None

    def __init__(self, sub):
        self.subs = [sub]

        # Properties for most wrappers are directly inherited. When it's not, they
        # are overriden in the fragment's __init__.
        self.needs_sig = sub.needs_sig
        self.is_forced = sub.is_forced
        self.is_expressive = sub.is_expressive
        self.is_nonmalleable = sub.is_nonmalleable
        self.abs_heightlocks = sub.abs_heightlocks
        self.rel_heightlocks = sub.rel_heightlocks
        self.abs_timelocks = sub.abs_timelocks
        self.rel_timelocks = sub.rel_timelocks
        self.no_timelock_mix = not (
            self.abs_heightlocks
            and self.abs_timelocks
            or self.rel_heightlocks
            and self.rel_timelocks
        )

    @property
    def sub(self):
        # Wrapper have a single sub
        return self.subs[0]

    def satisfaction(self, sat_material):
        # Most wrappers are satisfied this way, for special cases it's overriden.
        return self.sub.satisfaction(sat_material)

    def dissatisfaction(self):
        # Most wrappers are satisfied this way, for special cases it's overriden.
        return self.sub.dissatisfaction()

    def skip_colon(self):
        # We need to check this because of the pk() and pkh() aliases.
        if isinstance(self.sub, WrapC) and isinstance(self.sub.sub, (Pk, Pkh)):
            return False
        return isinstance(self.sub, WrapperNode)

    def __repr__(self):
        # Avoid duplicating colons
        if self.skip_colon():
            return f"{self.tag}{self.sub}"
        return f"{self.tag}:{self.sub}"


class WrapA(WrapperNode):
    tag = "a"

    def __init__(self, sub):
        require(sub.p.B, "a: sub must be of type B")
        WrapperNode.__init__(self, sub)

        self.p = Property("W" + "".join(c for c in "ud" if getattr(sub.p, c)))

    @property
    def _script(self):
        return [OP_TOALTSTACK] + self.sub._script + [OP_FROMALTSTACK]

    @property
    def script_size(self):
        return self.sub.script_size + 2

    @property
    def exec_info(self):
        return ExecutionInfo.from_wrap(self.sub.exec_info, ops_count=2)


class WrapS(WrapperNode):
    tag = "s"

    def __init__(self, sub):
        require(sub.p.has_all("Bo"), "s: sub must be of type Bo")
        WrapperNode.__init__(self, sub)

        self.p = Property("W" + "".join(c for c in "ud" if getattr(sub.p, c)))

    @property
    def _script(self):
        return [OP_SWAP] + self.sub._script

    @property
    def script_size(self):
        return self.sub.script_size + 1

    @property
    def has_free_verify(self):
        return self.sub.has_free_verify

    @property
    def exec_info(self):
        return ExecutionInfo.from_wrap(self.sub.exec_info, ops_count=1)


class WrapC(WrapperNode):
    tag = "c"
    has_free_verify = True

    def __init__(self, sub, is_taproot=False):
        require(sub.p.K, "c: sub must be of type K")
        WrapperNode.__init__(self, sub)
        self.is_taproot = is_taproot

        # FIXME: shouldn't n and d be default props on the website?
        self.p = Property("Bu" + "".join(c for c in "dno" if getattr(sub.p, c)))

    @property
    def _script(self):
        return self.sub._script + [OP_CHECKSIG]

    @property
    def script_size(self):
        return self.sub.script_size + 1

    @property
    def exec_info(self):
        # The signature is accounted for here, the key fragments only push the key.
        sig_size = SCHNORR_SIG_SIZE if self.is_taproot else ECDSA_SIG_SIZE
        return ExecutionInfo.from_wrap(
            self.sub.exec_info,
            ops_count=1,
            sat=1,
            dissat=1,
            sat_size=sig_size,
            dissat_size=1,
        )

    def __repr__(self):
        # Special case of aliases
        if isinstance(self.sub, Pk):
            return f"pk({self.sub.pubkey})"
        if isinstance(self.sub, Pkh):
            return f"pkh({self.sub.key_str()})"
        return WrapperNode.__repr__(self)


class WrapT(AndV, WrapperNode):
    tag = "t"

    def __init__(self, sub):
        AndV.__init__(self, sub, Just1())

    def __repr__(self):
        return WrapperNode.__repr__(self)


class WrapD(WrapperNode):
    tag = "d"

    def __init__(self, sub, is_taproot=False):
        require(sub.p.has_all("Vz"), "d: sub must be of type Vz")
        WrapperNode.__init__(self, sub)

        # MINIMALIF is a consensus rule in Tapscript, making 'd:' a unit.
        self.p = Property("Bond" + ("u" if is_taproot else ""))
        self.is_forced = True  # sub is V
        self.is_expressive = True  # sub is V, and we add a single dissat

    @property
    def _script(self):
        return [OP_DUP, OP_IF] + self.sub._script + [OP_ENDIF]

    @property
    def script_size(self):
        return self.sub.script_size + 3

    @property
    def exec_info(self):
        return ExecutionInfo.from_wrap_dissat(
            self.sub.exec_info,
            ops_count=3,
            sat=1,
            dissat=1,
            sat_size=2,
            dissat_size=1,
        )

    def satisfaction(self, sat_material):
        return self.sub.satisfaction(sat_material) + Satisfaction(witness=[b"\x01"])

    def dissatisfaction(self):
        return Satisfaction(witness=[b""])


class WrapV(WrapperNode):
    tag = "v"

    def __init__(self, sub):
        require(sub.p.B, "v: sub must be of type B")
        WrapperNode.__init__(self, sub)

        self.p = Property("V" + "".join(c for c in "zon" if getattr(sub.p, c)))
        self.is_forced = True  # V
        self.is_expressive = False  # V

    @property
    def _script(self):
        if self.sub.has_free_verify:
            script = self.sub._script
            return script[:-1] + [VERIFY_OPS[script[-1]]]
        return self.sub._script + [OP_VERIFY]

    @property
    def script_size(self):
        return self.sub.script_size + int(not self.sub.has_free_verify)

    @property
    def exec_info(self):
        verify_cost = int(not self.sub.has_free_verify)
        return ExecutionInfo.from_wrap(self.sub.exec_info, ops_count=verify_cost)

    def dissatisfaction(self):
        return Satisfaction.unavailable()  # It's V.


class WrapJ(WrapperNode):
    tag = "j"

    def __init__(self, sub):
        require(sub.p.has_all("Bn"), "j: sub must be of type Bn")
        WrapperNode.__init__(self, sub)

        self.p = Property("Bnd" + "".join(c for c in "ou" if getattr(sub.p, c)))
        self.is_forced = False  # d
        self.is_expressive = sub.is_forced

    @property
    def _script(self):
        return [OP_SIZE, OP_0NOTEQUAL, OP_IF, *self.sub._script, OP_ENDIF]

    @property
    def script_size(self):
        return self.sub.script_size + 4

    @property
    def exec_info(self):
        return ExecutionInfo.from_wrap_dissat(
            self.sub.exec_info, ops_count=4, dissat=1, dissat_size=1
        )

    def dissatisfaction(self):
        return Satisfaction(witness=[b""])


class WrapN(WrapperNode):
    tag = "n"

    def __init__(self, sub):
        require(sub.p.B, "n: sub must be of type B")
        WrapperNode.__init__(self, sub)

        self.p = Property("Bu" + "".join(c for c in "zond" if getattr(sub.p, c)))

    @property
    def _script(self):
        return [*self.sub._script, OP_0NOTEQUAL]

    @property
    def script_size(self):
        return self.sub.script_size + 1

    @property
    def exec_info(self):
        return ExecutionInfo.from_wrap(self.sub.exec_info, ops_count=1)


class WrapL(OrI, WrapperNode):
    tag = "l"

    def __init__(self, sub):
        OrI.__init__(self, Just0(), sub)

    @property
    def sub(self):
        return self.subs[1]

    def __repr__(self):
        return WrapperNode.__repr__(self)


class WrapU(OrI, WrapperNode):
    tag = "u"

    def __init__(self, sub):
        OrI.__init__(self, sub, Just0())

    def __repr__(self):
        return WrapperNode.__repr__(self)
