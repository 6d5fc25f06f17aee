"""
Classification of a spend.

Given the scriptPubKey of the spent output along with the scriptSig and witness of the
spending input, figure out the type of output being spent and recover the key or the
Miniscript it commits to. The recovered Miniscript is translated to the NoChecks context,
its keys being BitcoinKeys, so that it can be interpreted the same way whatever the
context it was parsed under.
"""

import logging

from enum import Enum, auto

import coincurve

from ..descriptors import CovenantDescriptor
from ..descriptors.covenant import cov_script_code
from ..descriptors.errors import CovenantError
from ..descriptors.utils import tapbranch_hash, tapleaf_hash, taproot_tweak
from ..miniscript import Node
from ..miniscript.context import Bare, Legacy, Segwitv0, Tap
from ..miniscript.errors import (
    MiniscriptAnalysisError,
    MiniscriptContextError,
    MiniscriptMalformed,
)
from ..utils.hashes import hash160, sha256
from ..utils.script import (
    CScript,
    OP_0,
    OP_1,
    OP_CHECKSIG,
    OP_DUP,
    OP_EQUAL,
    OP_EQUALVERIFY,
    OP_HASH160,
)

from .errors import (
    ControlBlockParse,
    ControlBlockVerificationError,
    IncorrectPubkeyHash,
    IncorrectScriptHash,
    IncorrectWPubkeyHash,
    IncorrectWScriptHash,
    NonEmptyScriptSig,
    NonEmptyWitness,
    PubkeyParseError,
    ScriptParseError,
    TapAnnexUnsupported,
    UncompressedPubkey,
    UnexpectedStackEnd,
    XOnlyPublicKeyParseError,
)
from .stack import DISSATISFIED, SATISFIED, Stack

logger = logging.getLogger(__name__)

# The first byte of a Taproot annex, see BIP341.
TAPROOT_ANNEX_PREFIX = 0x50
# The maximum depth of a Taproot tree, see BIP341.
TAPROOT_CONTROL_MAX_NODE_COUNT = 128
TAPROOT_CONTROL_BASE_SIZE = 33
TAPROOT_CONTROL_NODE_SIZE = 32


class BitcoinKey:
    """A public key as found in a spend: a full ECDSA key or an x-only Schnorr key."""

    def __init__(self, key_bytes):
        assert isinstance(key_bytes, bytes)
        self.x_only = len(key_bytes) == 32
        if self.x_only:
            try:
                self.key = coincurve.PublicKeyXOnly(key_bytes)
            except ValueError as e:
                raise XOnlyPublicKeyParseError(f"Invalid x-only key: '{e}'") from e
        elif len(key_bytes) in (33, 65):
            try:
                self.key = coincurve.PublicKey(key_bytes)
            except ValueError as e:
                raise PubkeyParseError(f"Invalid public key: '{e}'") from e
        else:
            raise PubkeyParseError(f"Invalid public key size: {len(key_bytes)}")
        self._bytes = key_bytes

    def bytes(self):
        return self._bytes

    def is_uncompressed(self):
        return len(self._bytes) == 65

    def __repr__(self):
        return self._bytes.hex()

    def __eq__(self, other):
        return isinstance(other, BitcoinKey) and self._bytes == other._bytes

    def __hash__(self):
        return hash(self._bytes)


class TypedHash160:
    """The hash160 of a key, along with whether it is the hash of an x-only key."""

    def __init__(self, key_hash, x_only=False):
        assert isinstance(key_hash, bytes) and len(key_hash) == 20
        self.key_hash = key_hash
        self.x_only = x_only

    def __bytes__(self):
        return self.key_hash

    def __repr__(self):
        return self.key_hash.hex()

    def __eq__(self, other):
        return (
            isinstance(other, TypedHash160)
            and self.key_hash == other.key_hash
            and self.x_only == other.x_only
        )

    def __hash__(self):
        return hash((self.key_hash, self.x_only))


class NoChecksTranslator:
    """Translate the keys of a parsed Miniscript into BitcoinKeys."""

    def __init__(self, x_only=False):
        self.x_only = x_only

    def pk(self, key):
        return BitcoinKey(key.bytes())

    def pkh(self, key_hash):
        return TypedHash160(bytes(key_hash), x_only=self.x_only)


def to_no_checks(ms, ctx):
    return ms.translate_keys(NoChecksTranslator(x_only=ctx.is_taproot))


class ControlBlock:
    """The control block of a Taproot script path spend, see BIP341."""

    def __init__(self, leaf_version, output_key_parity, internal_key, merkle_branch):
        self.leaf_version = leaf_version
        self.output_key_parity = output_key_parity
        self.internal_key = internal_key
        self.merkle_branch = merkle_branch

    def from_bytes(data):
        data_len = len(data)
        if (
            data_len < TAPROOT_CONTROL_BASE_SIZE
            or (data_len - TAPROOT_CONTROL_BASE_SIZE) % TAPROOT_CONTROL_NODE_SIZE != 0
            or data_len
            > TAPROOT_CONTROL_BASE_SIZE
            + TAPROOT_CONTROL_NODE_SIZE * TAPROOT_CONTROL_MAX_NODE_COUNT
        ):
            raise ControlBlockParse(f"Invalid control block size {data_len}")
        try:
            internal_key = coincurve.PublicKeyXOnly(data[1:TAPROOT_CONTROL_BASE_SIZE])
        except ValueError as e:
            raise ControlBlockParse(f"Invalid internal key: '{e}'") from e
        merkle_branch = [
            data[i : i + TAPROOT_CONTROL_NODE_SIZE]
            for i in range(TAPROOT_CONTROL_BASE_SIZE, data_len, TAPROOT_CONTROL_NODE_SIZE)
        ]
        return ControlBlock(data[0] & 0xFE, data[0] & 1, internal_key, merkle_branch)

    def verify_taproot_commitment(self, output_key, script):
        """Whether the output key commits to this Script with this control block. The
        commitment uses the Elements Taproot tags.

        :param output_key: the x-only output key, as bytes.
        """
        node_hash = tapleaf_hash(script, self.leaf_version, elements=True)
        for sibling_hash in self.merkle_branch:
            node_hash = tapbranch_hash(node_hash, sibling_hash, elements=True)
        tweaked_key = taproot_tweak(
            self.internal_key.format(), node_hash, elements=True
        )
        return (
            tweaked_key.format() == output_key
            and int(tweaked_key.parity) == self.output_key_parity
        )


class PubkeyType(Enum):
    PK = auto()
    PKH = auto()
    WPKH = auto()
    SH_WPKH = auto()
    TR = auto()


class ScriptType(Enum):
    BARE = auto()
    SH = auto()
    WSH = auto()
    SH_WSH = auto()
    TR = auto()


class Inner:
    """What is being spent: a single key, a Miniscript, or a covenant."""

    pass


class PublicKeyInner(Inner):
    def __init__(self, key, pubkey_type):
        assert isinstance(key, BitcoinKey)
        self.key = key
        self.pubkey_type = pubkey_type

    def __eq__(self, other):
        return (
            isinstance(other, PublicKeyInner)
            and self.key == other.key
            and self.pubkey_type == other.pubkey_type
        )

    def __repr__(self):
        return f"PublicKey({self.key}, {self.pubkey_type.name})"


class ScriptInner(Inner):
    def __init__(self, ms, script_type):
        assert isinstance(ms, Node)
        self.ms = ms
        self.script_type = script_type

    def __eq__(self, other):
        return (
            isinstance(other, ScriptInner)
            and str(self.ms) == str(other.ms)
            and self.script_type == other.script_type
        )

    def __repr__(self):
        return f"Script({self.ms}, {self.script_type.name})"


class CovScriptInner(Inner):
    def __init__(self, key, ms):
        assert isinstance(key, BitcoinKey) and isinstance(ms, Node)
        self.key = key
        self.ms = ms

    def __eq__(self, other):
        return (
            isinstance(other, CovScriptInner)
            and self.key == other.key
            and str(self.ms) == str(other.ms)
        )

    def __repr__(self):
        return f"CovScript({self.key}, {self.ms})"


def is_p2pk(spk):
    return (
        len(spk) == 35
        and spk[0] == 33
        or len(spk) == 67
        and spk[0] == 65
    ) and spk[-1] == OP_CHECKSIG


def is_p2pkh(spk):
    return (
        len(spk) == 25
        and spk[0] == OP_DUP
        and spk[1] == OP_HASH160
        and spk[2] == 20
        and spk[23] == OP_EQUALVERIFY
        and spk[24] == OP_CHECKSIG
    )


def is_p2wpkh(spk):
    return len(spk) == 22 and spk[0] == OP_0 and spk[1] == 20


def is_p2wsh(spk):
    return len(spk) == 34 and spk[0] == OP_0 and spk[1] == 32


def is_p2tr(spk):
    return len(spk) == 34 and spk[0] == OP_1 and spk[1] == 32


def is_p2sh(spk):
    return (
        len(spk) == 23
        and spk[0] == OP_HASH160
        and spk[1] == 20
        and spk[22] == OP_EQUAL
    )


def p2pkh_script(key_hash):
    return CScript([OP_DUP, OP_HASH160, key_hash, OP_EQUALVERIFY, OP_CHECKSIG])


def pk_from_elem(elem, require_compressed):
    """Parse a public key from a stack element."""
    if not elem.is_push():
        raise PubkeyParseError(f"Expected a public key, got {elem}")
    key = BitcoinKey(elem.data)
    if key.x_only:
        raise PubkeyParseError(f"Expected a full public key, got {key}")
    if require_compressed and key.is_uncompressed():
        raise UncompressedPubkey()
    return key


def script_from_elem(elem):
    """The Script pushed by this stack element."""
    if elem == SATISFIED:
        return CScript([OP_1])
    if elem == DISSATISFIED:
        return CScript([OP_0])
    return CScript(elem.data)


def parse_script(script, ctx):
    """Parse a Miniscript from this Script under {ctx}, without sanity checks."""
    try:
        return Node.from_script(script, ctx=ctx)
    except (MiniscriptMalformed, MiniscriptContextError) as e:
        raise ScriptParseError(
            f"Invalid {ctx.name} Script '{script.hex()}': {e.message}"
        ) from e


def cov_components_from_script(script):
    """Try to parse a covenant from this witness Script, None if it isn't one."""
    try:
        pk, ms = CovenantDescriptor.parse_cov_components(script)
    except (
        CovenantError,
        MiniscriptMalformed,
        MiniscriptContextError,
        MiniscriptAnalysisError,
    ) as e:
        logger.debug(f"Not a covenant, parsing as Miniscript instead: {e.message}")
        return None
    return BitcoinKey(pk.bytes()), to_no_checks(ms, Segwitv0)


def from_txdata(spk, script_sig, witness):
    """Figure out what is being spent from the spending data.

    :param spk: the scriptPubKey of the spent output.
    :param script_sig: the scriptSig of the spending input.
    :param witness: the witness of the spending input, as a list of bytes.

    Returns a tuple (inner, stack, script_code). The inner is what is being spent, the
    stack is what is left for satisfying it and the script code is the Script to
    compute the signature hash for, None for a Taproot key path spend.
    """
    spk = CScript(bytes(spk))
    ssig_stack = Stack.from_script_sig(CScript(bytes(script_sig)))
    wit_stack = Stack.from_witness(witness)

    # ** pay to pubkey **
    if is_p2pk(spk):
        if not wit_stack.is_empty():
            raise NonEmptyWitness()
        key = BitcoinKey(bytes(spk[1:-1]))
        logger.debug(f"Spending a P2PK output for key {key}")
        return PublicKeyInner(key, PubkeyType.PK), ssig_stack, spk

    # ** pay to pubkeyhash **
    if is_p2pkh(spk):
        if not wit_stack.is_empty():
            raise NonEmptyWitness()
        key = pk_from_elem(ssig_stack.pop(), require_compressed=False)
        if hash160(key.bytes()) != spk[3:23]:
            raise IncorrectPubkeyHash()
        logger.debug(f"Spending a P2PKH output for key {key}")
        return PublicKeyInner(key, PubkeyType.PKH), ssig_stack, spk

    # ** pay to witness pubkeyhash **
    if is_p2wpkh(spk):
        if not ssig_stack.is_empty():
            raise NonEmptyScriptSig()
        key = pk_from_elem(wit_stack.pop(), require_compressed=True)
        key_hash = hash160(key.bytes())
        if key_hash != spk[2:]:
            raise IncorrectWPubkeyHash()
        logger.debug(f"Spending a P2WPKH output for key {key}")
        return PublicKeyInner(key, PubkeyType.WPKH), wit_stack, p2pkh_script(key_hash)

    # ** pay to witness scripthash **
    if is_p2wsh(spk):
        if not ssig_stack.is_empty():
            raise NonEmptyScriptSig()
        script = script_from_elem(wit_stack.pop())
        # A covenant Script is a valid Miniscript followed by the covenant checks, it
        # needs to be recognized before trying to parse it as Miniscript.
        cov_components = cov_components_from_script(script)
        if cov_components is not None:
            if sha256(bytes(script)) != spk[2:]:
                raise IncorrectWScriptHash()
            logger.debug("Spending a covenant P2WSH output")
            return CovScriptInner(*cov_components), wit_stack, cov_script_code()
        ms = parse_script(script, Segwitv0)
        script = ms.script
        if sha256(bytes(script)) != spk[2:]:
            raise IncorrectWScriptHash()
        logger.debug(f"Spending a P2WSH output for Miniscript {ms}")
        return ScriptInner(to_no_checks(ms, Segwitv0), ScriptType.WSH), wit_stack, script

    # ** pay to taproot **
    if is_p2tr(spk):
        if not ssig_stack.is_empty():
            raise NonEmptyScriptSig()
        output_key = bytes(spk[2:])
        try:
            coincurve.PublicKeyXOnly(output_key)
        except ValueError as e:
            raise XOnlyPublicKeyParseError(f"Invalid output key: '{e}'") from e

        last = wit_stack.last()
        if (
            len(wit_stack) >= 2
            and last.is_push()
            and len(last.data) > 0
            and last.data[0] == TAPROOT_ANNEX_PREFIX
        ):
            raise TapAnnexUnsupported()

        if len(wit_stack) == 0:
            raise UnexpectedStackEnd()
        if len(wit_stack) == 1:
            logger.debug("Spending a Taproot output using the key path")
            key = BitcoinKey(output_key)
            return PublicKeyInner(key, PubkeyType.TR), wit_stack, None

        control_block_data = wit_stack.pop().as_push()
        tap_script = script_from_elem(wit_stack.pop())
        control_block = ControlBlock.from_bytes(control_block_data)
        ms = parse_script(tap_script, Tap)
        tap_script = ms.script
        if not control_block.verify_taproot_commitment(output_key, tap_script):
            raise ControlBlockVerificationError()
        logger.debug(f"Spending a Taproot output using the leaf {ms}")
        return ScriptInner(to_no_checks(ms, Tap), ScriptType.TR), wit_stack, tap_script

    # ** pay to scripthash **
    if is_p2sh(spk):
        elem = ssig_stack.pop()
        if elem.is_push():
            redeem_script = elem.data
            if hash160(redeem_script) != spk[2:22]:
                raise IncorrectScriptHash()

            # ** p2sh-wrapped wpkh **
            if len(redeem_script) == 22 and redeem_script[:2] == b"\x00\x14":
                wit_elem = wit_stack.pop()
                if not ssig_stack.is_empty():
                    raise NonEmptyScriptSig()
                key = pk_from_elem(wit_elem, require_compressed=True)
                key_hash = hash160(key.bytes())
                if redeem_script[2:] != key_hash:
                    raise IncorrectWPubkeyHash()
                logger.debug(f"Spending a P2SH-P2WPKH output for key {key}")
                return (
                    PublicKeyInner(key, PubkeyType.SH_WPKH),
                    wit_stack,
                    p2pkh_script(key_hash),
                )

            # ** p2sh-wrapped wsh **
            if len(redeem_script) == 34 and redeem_script[:2] == b"\x00\x20":
                wit_elem = wit_stack.pop()
                if not ssig_stack.is_empty():
                    raise NonEmptyScriptSig()
                ms = parse_script(script_from_elem(wit_elem), Segwitv0)
                script = ms.script
                if redeem_script[2:] != sha256(bytes(script)):
                    raise IncorrectWScriptHash()
                logger.debug(f"Spending a P2SH-P2WSH output for Miniscript {ms}")
                return (
                    ScriptInner(to_no_checks(ms, Segwitv0), ScriptType.SH_WSH),
                    wit_stack,
                    script,
                )

        # ** normal p2sh **
        ms = parse_script(script_from_elem(elem), Legacy)
        script = ms.script
        if not wit_stack.is_empty():
            raise NonEmptyWitness()
        if hash160(bytes(script)) != spk[2:22]:
            raise IncorrectScriptHash()
        logger.debug(f"Spending a P2SH output for Miniscript {ms}")
        return ScriptInner(to_no_checks(ms, Legacy), ScriptType.SH), ssig_stack, script

    # ** bare script **
    if not wit_stack.is_empty():
        raise NonEmptyWitness()
    ms = parse_script(spk, Bare)
    logger.debug(f"Spending a bare output for Miniscript {ms}")
    return ScriptInner(to_no_checks(ms, Bare), ScriptType.BARE), ssig_stack, spk
