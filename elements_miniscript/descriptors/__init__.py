import copy

from embit.liquid.networks import NETWORKS as LIQUID_NETWORKS
from embit.networks import NETWORKS
from embit.script import Script as EmbitScript

from elements_miniscript.key import DescriptorKey
from elements_miniscript.miniscript import Node
from elements_miniscript.miniscript.context import Bare, Legacy, Segwitv0, Tap
from elements_miniscript.utils.hashes import sha256, hash160
from elements_miniscript.utils.script import (
    CScript,
    OP_0,
    OP_1,
    OP_DUP,
    OP_EQUAL,
    OP_HASH160,
    OP_EQUALVERIFY,
    OP_CHECKSIG,
)

from .checksum import descsum_create, verify_checksum
from .errors import (
    BareDescriptorAddr,
    DescriptorError,
    DescriptorParsingError,
    ImpossibleSatisfaction,
    MissingSignature,
)
from .parsing import (
    ELEMENTS_PREFIX,
    Tree,
    descriptor_from_str,
    parse_key,
    parse_miniscript,
    parse_tree_exp,
    split_prefix,
)
from .utils import (
    TaplefSat,
    TreeNode,
    push_opcode_size,
    tapleaf_hash,
    taproot_tweak,
    varint_len,
    witness_to_scriptsig,
)

# The size of an ECDSA signature with its sighash type byte and its push, and of a
# Schnorr one.
MAX_ECDSA_SIG_SIZE = 73
MAX_SCHNORR_SIG_SIZE = 65


def p2pkh_script(key_hash):
    return CScript([OP_DUP, OP_HASH160, key_hash, OP_EQUALVERIFY, OP_CHECKSIG])


def p2sh_script(script):
    return CScript([OP_HASH160, hash160(bytes(script)), OP_EQUAL])


def p2wsh_script(script):
    return CScript([OP_0, sha256(bytes(script))])


def satisfy_ms(ms, sat_material, malleable=False):
    """Get the witness satisfying this Miniscript, raise if there is none."""
    if malleable:
        witness = ms.satisfy_malleable(sat_material)
    else:
        witness = ms.satisfy(sat_material)
    if witness is None:
        raise ImpossibleSatisfaction(f"Could not satisfy Miniscript '{ms}'")
    return witness


def ms_satisfaction_size(ms):
    """The maximum size of the satisfaction of this Miniscript, raise if unsatisfiable."""
    size = ms.max_satisfaction_size()
    if size is None:
        raise ImpossibleSatisfaction(f"Miniscript '{ms}' can't be satisfied")
    return size


class Descriptor:
    """An Output Script Descriptor.

    Descriptors are serialized with the Elements namespace prefix ('elwsh(...)') unless
    parsed without it, in which case they use the Bitcoin network parameters by default.
    """

    # Whether this descriptor is namespaced as an Elements descriptor.
    is_elements = True

    def from_str(desc_str, strict=True):
        """Parse an Output Script Descriptor from its string representation.

        :param strict: whether to require the presence of a checksum, True by default.
        """
        desc = descriptor_from_str(desc_str, strict)

        # BIP389 prescribes that no two multipath key expressions in a single descriptor
        # have different length.
        multipath_len = None
        for key in desc.keys:
            if key.is_multipath():
                m_len = len(key.path.paths)
                if multipath_len is None:
                    multipath_len = m_len
                elif multipath_len != m_len:
                    raise DescriptorParsingError(
                        f"Descriptor contains multipath key expressions with varying length: '{desc_str}'."
                    )

        return desc

    def __repr__(self):
        prefix = ELEMENTS_PREFIX if self.is_elements else ""
        return descsum_create(prefix + self.desc_str())

    def __eq__(self, other):
        return isinstance(other, Descriptor) and str(self) == str(other)

    def __hash__(self):
        return hash(str(self))

    def desc_str(self):
        """The string representation of this descriptor without namespace prefix nor
        checksum, as it appears when nested in another descriptor."""
        # To be implemented by derived classes
        raise NotImplementedError

    @property
    def script_pubkey(self):
        """Get the ScriptPubKey (output 'locking' Script) for this descriptor."""
        # To be implemented by derived classes
        raise NotImplementedError

    @property
    def explicit_script(self):
        """Get the Script the spender is presented with, before it is hashed in the
        output."""
        # To be implemented by derived classes
        raise NotImplementedError

    @property
    def script_code(self):
        """Get the Script to be committed to by the signature hash of a spending transaction."""
        return self.explicit_script

    @property
    def unsigned_script_sig(self):
        """Get the scriptSig of a spending transaction before it is signed."""
        return CScript()

    @property
    def keys(self):
        """Get the list of all keys from this descriptor, in order of apparition."""
        # To be implemented by derived classes
        raise NotImplementedError

    def for_each_key(self, pred):
        """Whether {pred} holds for all the keys of this descriptor."""
        return all(pred(key) for key in self.keys)

    def translate_keys(self, translator):
        """Get a copy of this descriptor with all the keys translated.

        :param translator: an object with a pk(key) method returning the new key and a
                           pkh(hash) method returning the new key hash.
        """
        # To be implemented by derived classes
        raise NotImplementedError

    def derive(self, index):
        """Derive the key at the given derivation index.

        A no-op if the key isn't a wildcard. Will start from 2**31 if the key is a "hardened
        wildcard".
        """
        assert isinstance(index, int)
        for key in self.keys:
            key.derive(index)

    def sanity_check(self):
        """Check the Script of this descriptor is safe to use. Raise otherwise."""
        pass

    def default_network(self):
        if self.is_elements:
            return LIQUID_NETWORKS["liquidv1"]
        return NETWORKS["main"]

    def address(self, network=None):
        """Get the (unconfidential) address for this descriptor.

        :param network: the embit network parameters, by default the Liquid ones for
                        Elements descriptors and the Bitcoin mainnet ones otherwise.
        """
        if network is None:
            network = self.default_network()
        return EmbitScript(bytes(self.script_pubkey)).address(network)

    def _satisfaction(self, sat_material, malleable):
        # To be implemented by derived classes
        raise NotImplementedError

    def get_satisfaction(self, sat_material):
        """Get the (witness stack, scriptSig) pair spending from this descriptor.

        :param sat_material: a miniscript.satisfaction.SatisfactionMaterial with data
                             available to fulfill the conditions set by the Script.
        """
        return self._satisfaction(sat_material, malleable=False)

    def get_satisfaction_mall(self, sat_material):
        """Same as get_satisfaction but allows malleable satisfactions."""
        return self._satisfaction(sat_material, malleable=True)

    def max_satisfaction_weight(self):
        """An upper bound on the weight of the scriptSig and witness spending from this
        descriptor."""
        # To be implemented by derived classes
        raise NotImplementedError

    def copy(self):
        """Get a copy of this descriptor."""
        # FIXME: do something nicer than roundtripping through string ser
        return Descriptor.from_str(str(self))

    def is_multipath(self):
        """Whether this descriptor contains multipath key expression(s)."""
        return any(k.is_multipath() for k in self.keys)

    def singlepath_descriptors(self):
        """Get a list of descriptors that only contain keys that don't have multiple
        derivation paths.
        """
        singlepath_descs = [self.copy()]

        # First figure out the number of descriptors there will be
        for key in self.keys:
            if key.is_multipath():
                singlepath_descs += [
                    self.copy() for _ in range(len(key.path.paths) - 1)
                ]
                break

        # Return early if there was no multipath key expression
        if len(singlepath_descs) == 1:
            return singlepath_descs

        # Then use one path for each
        for i, desc in enumerate(singlepath_descs):
            for key in desc.keys:
                if key.is_multipath():
                    assert len(key.path.paths) == len(singlepath_descs)
                    key.path.paths = key.path.paths[i : i + 1]

        assert all(not d.is_multipath() for d in singlepath_descs)
        return singlepath_descs


class PreTaprootDescriptor(Descriptor):
    """Any of the descriptors which predate Taproot: bare, pkh, wpkh, sh and wsh."""

    def from_tree(tree):
        """Dispatch a parsed expression to the pre-Taproot descriptor it names.

        Any expression which isn't a pkh(), wpkh(), sh() or wsh() is a bare Script.
        """
        descriptors = {
            ("pkh", 1): PkhDescriptor,
            ("wpkh", 1): WpkhDescriptor,
            ("sh", 1): ShDescriptor,
            ("wsh", 1): WshDescriptor,
        }
        desc_cls = descriptors.get((tree.name, len(tree.args)), BareDescriptor)
        return desc_cls.from_tree(tree)

    def from_str(desc_str, strict=True):
        """Parse a pre-Taproot descriptor from its string representation.

        :param strict: whether to require the presence of a checksum, True by default.
        """
        desc_str = verify_checksum(desc_str, strict=strict)
        is_elements, desc_str = split_prefix(desc_str)
        desc = PreTaprootDescriptor.from_tree(Tree.from_str(desc_str))
        desc.is_elements = is_elements
        return desc


class BareDescriptor(PreTaprootDescriptor):
    """A descriptor for a bare Script output."""

    def __init__(self, ms):
        assert isinstance(ms, Node)
        Bare.top_level_checks(ms)
        self.ms = ms

    def from_tree(tree):
        return BareDescriptor(parse_miniscript(tree.string, Bare))

    def desc_str(self):
        return str(self.ms)

    @property
    def script_pubkey(self):
        return self.ms.script

    @property
    def explicit_script(self):
        return self.ms.script

    @property
    def keys(self):
        return self.ms.keys

    def translate_keys(self, translator):
        desc = copy.copy(self)
        desc.ms = self.ms.translate_keys(translator)
        return desc

    def sanity_check(self):
        self.ms.sanity_check(Bare)

    def address(self, network=None):
        raise BareDescriptorAddr()

    def _satisfaction(self, sat_material, malleable):
        witness = satisfy_ms(self.ms, sat_material, malleable)
        return [], witness_to_scriptsig(witness)

    def max_satisfaction_weight(self):
        scriptsig_len = ms_satisfaction_size(self.ms)
        return 4 * (varint_len(scriptsig_len) + scriptsig_len)


class PkhDescriptor(PreTaprootDescriptor):
    """A legacy P2PKH Output Script Descriptor."""

    def __init__(self, pubkey):
        assert isinstance(pubkey, DescriptorKey)
        if pubkey.x_only:
            raise DescriptorError(f"x-only key '{pubkey}' in a pkh() descriptor")
        self.pubkey = pubkey

    def from_tree(tree):
        if tree.name != "pkh" or len(tree.args) != 1:
            raise tree.unexpected("pkh")
        try:
            return PkhDescriptor(parse_key(tree.args[0]))
        except DescriptorError as e:
            raise DescriptorParsingError(e.message) from e

    def desc_str(self):
        return f"pkh({self.pubkey})"

    @property
    def script_pubkey(self):
        return p2pkh_script(hash160(self.pubkey.bytes()))

    @property
    def explicit_script(self):
        return self.script_pubkey

    @property
    def keys(self):
        return [self.pubkey]

    def translate_keys(self, translator):
        desc = copy.copy(self)
        desc.pubkey = translator.pk(self.pubkey)
        return desc

    def _satisfaction(self, sat_material, malleable):
        pubkey = self.pubkey.bytes()
        sig = sat_material.lookup_ecdsa_sig(pubkey)
        if sig is None:
            raise MissingSignature(self.pubkey)
        return [], CScript([sig, pubkey])

    def max_satisfaction_weight(self):
        # Keys are pushed with a length byte.
        pk_len = 66 if self.pubkey.is_uncompressed() else 34
        return 4 * (1 + MAX_ECDSA_SIG_SIZE + pk_len)


class WpkhDescriptor(PreTaprootDescriptor):
    """A Segwit v0 P2WPKH Output Script Descriptor."""

    def __init__(self, pubkey):
        assert isinstance(pubkey, DescriptorKey)
        if pubkey.is_uncompressed():
            raise DescriptorError(f"Uncompressed key '{pubkey}' in a wpkh() descriptor")
        if pubkey.x_only:
            raise DescriptorError(f"x-only key '{pubkey}' in a wpkh() descriptor")
        self.pubkey = pubkey

    def from_tree(tree):
        if tree.name != "wpkh" or len(tree.args) != 1:
            raise tree.unexpected("wpkh")
        try:
            return WpkhDescriptor(parse_key(tree.args[0]))
        except DescriptorError as e:
            raise DescriptorParsingError(e.message) from e

    def desc_str(self):
        return f"wpkh({self.pubkey})"

    @property
    def script_pubkey(self):
        witness_program = hash160(self.pubkey.bytes())
        return CScript([0, witness_program])

    @property
    def explicit_script(self):
        return self.script_pubkey

    @property
    def script_code(self):
        return p2pkh_script(hash160(self.pubkey.bytes()))

    @property
    def keys(self):
        return [self.pubkey]

    def translate_keys(self, translator):
        desc = copy.copy(self)
        desc.pubkey = translator.pk(self.pubkey)
        return desc

    def _satisfaction(self, sat_material, malleable):
        pubkey = self.pubkey.bytes()
        sig = sat_material.lookup_ecdsa_sig(pubkey)
        if sig is None:
            raise MissingSignature(self.pubkey)
        return [sig, pubkey], CScript()

    def max_satisfaction_weight(self):
        # Empty scriptSig, number of witness elements, signature and key.
        return 4 + 1 + MAX_ECDSA_SIG_SIZE + 34


class WshDescriptor(PreTaprootDescriptor):
    """A Segwit v0 P2WSH Output Script Descriptor."""

    def __init__(self, witness_script):
        assert isinstance(witness_script, Node)
        Segwitv0.top_level_checks(witness_script)
        self.witness_script = witness_script

    def from_tree(tree):
        if tree.name != "wsh" or len(tree.args) != 1:
            raise tree.unexpected("wsh")
        return WshDescriptor(parse_miniscript(tree.args[0], Segwitv0))

    def desc_str(self):
        return f"wsh({self.witness_script})"

    @property
    def script_pubkey(self):
        return p2wsh_script(self.witness_script.script)

    @property
    def explicit_script(self):
        return self.witness_script.script

    @property
    def keys(self):
        return self.witness_script.keys

    def translate_keys(self, translator):
        desc = copy.copy(self)
        desc.witness_script = self.witness_script.translate_keys(translator)
        return desc

    def sanity_check(self):
        self.witness_script.sanity_check(Segwitv0)

    def _satisfaction(self, sat_material, malleable):
        witness = satisfy_ms(self.witness_script, sat_material, malleable)
        return witness + [bytes(self.witness_script.script)], CScript()

    def witness_weight(self):
        script_size = self.witness_script.script_size
        max_sat_elems = self.witness_script.max_satisfaction_witness_elements()
        max_sat_size = ms_satisfaction_size(self.witness_script)
        return (
            varint_len(script_size)
            + script_size
            + varint_len(max_sat_elems)
            + max_sat_size
        )

    def max_satisfaction_weight(self):
        # The empty scriptSig's length byte, then the witness.
        return 4 + self.witness_weight()


class ShDescriptor(PreTaprootDescriptor):
    """A P2SH Output Script Descriptor.

    The redeem Script is either a Legacy Miniscript, or a wpkh() or wsh() descriptor.
    """

    def __init__(self, inner):
        assert isinstance(inner, (Node, WpkhDescriptor, WshDescriptor))
        if isinstance(inner, Node):
            Legacy.top_level_checks(inner)
        self.inner = inner

    def from_tree(tree):
        if tree.name != "sh" or len(tree.args) != 1:
            raise tree.unexpected("sh")
        sub = Tree.from_str(tree.args[0])
        if sub.name == "wpkh":
            return ShDescriptor(WpkhDescriptor.from_tree(sub))
        if sub.name == "wsh":
            return ShDescriptor(WshDescriptor.from_tree(sub))
        return ShDescriptor(parse_miniscript(tree.args[0], Legacy))

    def is_nested_segwit(self):
        return not isinstance(self.inner, Node)

    def desc_str(self):
        if self.is_nested_segwit():
            return f"sh({self.inner.desc_str()})"
        return f"sh({self.inner})"

    @property
    def redeem_script(self):
        if self.is_nested_segwit():
            return self.inner.script_pubkey
        return self.inner.script

    @property
    def script_pubkey(self):
        return p2sh_script(self.redeem_script)

    @property
    def explicit_script(self):
        if self.is_nested_segwit():
            return self.inner.explicit_script
        return self.inner.script

    @property
    def script_code(self):
        if self.is_nested_segwit():
            return self.inner.script_code
        return self.inner.script

    @property
    def unsigned_script_sig(self):
        if self.is_nested_segwit():
            return CScript([bytes(self.redeem_script)])
        return CScript()

    @property
    def keys(self):
        return self.inner.keys

    def translate_keys(self, translator):
        desc = copy.copy(self)
        desc.inner = self.inner.translate_keys(translator)
        return desc

    def sanity_check(self):
        if self.is_nested_segwit():
            self.inner.sanity_check()
        else:
            self.inner.sanity_check(Legacy)

    def _satisfaction(self, sat_material, malleable):
        if self.is_nested_segwit():
            witness, _ = self.inner._satisfaction(sat_material, malleable)
            return witness, self.unsigned_script_sig
        witness = satisfy_ms(self.inner, sat_material, malleable)
        script_sig = witness_to_scriptsig(witness) + bytes(self.inner.script)
        return [], script_sig

    def max_satisfaction_weight(self):
        if isinstance(self.inner, WpkhDescriptor):
            # The scriptSig pushes the 22 bytes witness program.
            return 4 * 24 + 1 + MAX_ECDSA_SIG_SIZE + 34
        if isinstance(self.inner, WshDescriptor):
            # The scriptSig pushes the 34 bytes witness program.
            return 4 * 36 + self.inner.witness_weight()
        script_size = self.inner.script_size
        scriptsig_len = (
            push_opcode_size(script_size)
            + script_size
            + ms_satisfaction_size(self.inner)
        )
        return 4 * (varint_len(scriptsig_len) + scriptsig_len)


class TrDescriptor(Descriptor):
    """A Pay-to-Taproot Output Script Descriptor."""

    def __init__(self, internal_key, tree=None):
        assert isinstance(internal_key, DescriptorKey) and internal_key.x_only
        assert tree is None or isinstance(tree, (TreeNode, Node))
        self.internal_key = internal_key
        self.tree = tree

    def from_tree(tree):
        if tree.name != "tr" or len(tree.args) not in (1, 2):
            raise tree.unexpected("tr")
        internal_key = parse_key(tree.args[0], x_only=True)
        if len(tree.args) == 1:
            return TrDescriptor(internal_key)
        return TrDescriptor(internal_key, parse_tree_exp(tree.args[1]))

    def desc_str(self):
        if self.tree is not None:
            return f"tr({self.internal_key},{self.tree})"
        return f"tr({self.internal_key})"

    def output_key(self):
        """The tweaked output key. Elements outputs use the Elements tags and leaf
        version, Bitcoin ones those of BIP341."""
        if isinstance(self.tree, TreeNode):
            merkle_root = self.tree.merkle_root(self.is_elements)
        elif isinstance(self.tree, Node):
            merkle_root = tapleaf_hash(self.tree.script, elements=self.is_elements)
        else:
            assert self.tree is None
            # "If the spending conditions do not require a script path, the output key
            # should commit to an unspendable script path" (see BIP341, BIP386)
            merkle_root = b""
        return taproot_tweak(
            self.internal_key.bytes(), merkle_root, elements=self.is_elements
        )

    def leaves(self):
        """Get a list of (leaf, merkle proof) for each leaf of the tree."""
        if isinstance(self.tree, TreeNode):
            return self.tree.merkle_proofs(elements=self.is_elements)
        if isinstance(self.tree, Node):
            return [(self.tree, [])]
        return []

    @property
    def script_pubkey(self):
        return CScript([OP_1, self.output_key().format()])

    @property
    def explicit_script(self):
        raise DescriptorError("Taproot descriptors don't have an explicit Script")

    @property
    def script_code(self):
        raise DescriptorError("Taproot descriptors don't have a script code")

    @property
    def keys(self):
        return [self.internal_key] + [
            key for leaf, _ in self.leaves() for key in leaf.keys
        ]

    def translate_keys(self, translator):
        desc = copy.copy(self)
        desc.internal_key = translator.pk(self.internal_key)
        if self.tree is not None:
            desc.tree = self.tree.translate_keys(translator)
        return desc

    def sanity_check(self):
        for leaf, _ in self.leaves():
            leaf.sanity_check(Tap)

    def _satisfaction(self, sat_material, malleable):
        # First, try to satisfy using key-path spend
        out_key = self.output_key()
        sig = sat_material.lookup_ecdsa_sig(out_key.format())
        if sig is not None:
            return [sig], CScript()

        # Then, look for satisfiable leaves. Use the less expensive available.
        best_sat = None
        for leaf, merkle_proof in self.leaves():
            if malleable:
                sat = leaf.satisfy_malleable(sat_material)
            else:
                sat = leaf.satisfy(sat_material)
            if sat is None:
                continue
            sat = TaplefSat(merkle_proof, sat, leaf.script)
            if best_sat is None or sat < best_sat:
                best_sat = sat

        if best_sat is None:
            raise ImpossibleSatisfaction(f"Could not satisfy '{self}'")
        witness = best_sat.witness(self.internal_key, out_key.parity, self.is_elements)
        return witness, CScript()

    def max_satisfaction_weight(self):
        # Number of witness elements and a single signature for the key path.
        max_weight = 1 + 1 + MAX_SCHNORR_SIG_SIZE
        for leaf, merkle_proof in self.leaves():
            sat_size = leaf.max_satisfaction_size()
            if sat_size is None:
                continue
            script_size = leaf.script_size
            control_block_size = 33 + 32 * len(merkle_proof)
            max_weight = max(
                max_weight,
                varint_len(leaf.exec_info.sat_elems + 2)
                + sat_size
                + varint_len(script_size)
                + script_size
                + varint_len(control_block_size)
                + control_block_size,
            )
        return 4 + max_weight


from .covenant import CovenantDescriptor  # noqa: E402
