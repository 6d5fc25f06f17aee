import coincurve
import os
import pytest

from elements_miniscript.descriptors import CovenantDescriptor, Descriptor
from elements_miniscript.descriptors.checksum import descsum_create
from elements_miniscript.descriptors.covenant import (
    COV_OPS_COUNT,
    COV_SCRIPT_SIZE,
    cov_script_code,
)
from elements_miniscript.descriptors.errors import (
    BadCovDescriptor,
    CovenantSighashTypeMismatch,
    DescriptorParsingError,
    ImpossibleSatisfaction,
    MissingCovSignature,
    MissingSighashItem,
)
from elements_miniscript.descriptors.utils import compact_size
from elements_miniscript.interpreter import CovScriptInner, Push, from_txdata
from elements_miniscript.key import DescriptorKey
from elements_miniscript.miniscript import Node, SatisfactionMaterial
from elements_miniscript.miniscript.context import (
    MAX_OPS_PER_SCRIPT,
    Covenant,
    Legacy,
    Segwitv0,
    Tap,
)
from elements_miniscript.miniscript.errors import MiniscriptContextError, MiniscriptMalformed
from elements_miniscript.miniscript.fragments import (
    AndV,
    OutputsPref,
    Pk,
    VerEq,
    WrapC,
    WrapV,
)
from elements_miniscript.utils.hashes import hash256, sha256
from elements_miniscript.utils.script import (
    CScript,
    OP_CAT,
    OP_CHECKSIGFROMSTACK,
    OP_DEPTH,
    OP_EQUAL,
    OP_HASH256,
    OP_PICK,
    OP_SUB,
    OP_SWAP,
)


def keypair():
    privkey = coincurve.PrivateKey()
    return privkey.public_key.format(), privkey


def sign(privkey, sighash_type=1):
    return privkey.sign(os.urandom(32), hasher=None) + bytes([sighash_type])


def parse_desc(desc_str):
    return Descriptor.from_str(descsum_create(desc_str))


def sighash_items(**overrides):
    """A full set of signature hash components, with the given ones replaced."""
    items = {
        "n_version": 2,
        "hash_prevouts": os.urandom(32),
        "hash_sequence": os.urandom(32),
        "hash_issuances": os.urandom(32),
        "outpoint": os.urandom(36),
        "script_code": cov_script_code(),
        # An explicit value: the 0x01 prefix followed by the 8-bytes big-endian amount.
        "value": b"\x01" + (100_000).to_bytes(8, "big"),
        "n_sequence": 0xFFFFFFFE,
        "outputs": [os.urandom(43), os.urandom(66)],
        "n_locktime": 0,
        "sighash_type": 1,
    }
    items.update(overrides)
    return items


def test_cov_descriptor_parsing():
    (cov_pk, _), (user_pk, _) = keypair(), keypair()
    desc_str = f"elcovwsh({cov_pk.hex()},pk({user_pk.hex()}))"
    desc = parse_desc(desc_str)
    assert isinstance(desc, CovenantDescriptor)
    assert desc.is_elements
    assert str(desc).split("#")[0] == desc_str
    assert Descriptor.from_str(str(desc)) == desc
    assert [k.bytes() for k in desc.keys] == [cov_pk, user_pk]

    # The Script ends with the covenant checks, the Miniscript comes first.
    script = desc.explicit_script
    assert script.startswith(bytes(Node.from_str(f"v:pk({user_pk.hex()})").script))
    assert script.endswith(bytes(cov_script_code()))
    assert script[-1] == OP_CHECKSIGFROMSTACK
    assert desc.script_pubkey == CScript([0, sha256(script)])
    assert len(script) == desc.script_size
    # pk() is c:pk_k(), its CHECKSIG is turned into a CHECKSIGVERIFY.
    assert desc.script_size == 34 + 1 + COV_SCRIPT_SIZE - 1
    desc.sanity_check()

    # Covenants only exist on Elements.
    with pytest.raises(DescriptorParsingError, match="only exist on Elements"):
        parse_desc(f"covwsh({cov_pk.hex()},pk({user_pk.hex()}))")
    # The covenant takes a key and a Miniscript.
    with pytest.raises(DescriptorParsingError):
        parse_desc(f"elcovwsh({cov_pk.hex()})")
    with pytest.raises(DescriptorParsingError):
        parse_desc(f"elcovwsh(pk({user_pk.hex()}),{cov_pk.hex()})")
    with pytest.raises(DescriptorParsingError):
        parse_desc(f"elcovwsh({cov_pk.hex()},v:pk({user_pk.hex()}))")


def test_cov_script_roundtrip():
    (cov_pk, _), (user_pk, _), (other_pk, _) = keypair(), keypair(), keypair()
    for ms_str in [
        f"pk({user_pk.hex()})",
        f"and_v(v:pk({user_pk.hex()}),older(144))",
        f"or_d(pk({user_pk.hex()}),and_v(v:pk({other_pk.hex()}),after(100)))",
        f"multi(1,{user_pk.hex()},{other_pk.hex()})",
    ]:
        desc = parse_desc(f"elcovwsh({cov_pk.hex()},{ms_str})")
        assert CovenantDescriptor.parse(desc.explicit_script) == desc
        assert CovenantDescriptor.parse_insane(desc.explicit_script) == desc
        pk, ms = CovenantDescriptor.parse_cov_components(desc.explicit_script)
        assert pk.bytes() == cov_pk
        assert str(ms) == ms_str

    # Regular P2WSH Scripts aren't covenants.
    wsh_desc = parse_desc(f"wsh(pk({user_pk.hex()}))")
    with pytest.raises(BadCovDescriptor):
        CovenantDescriptor.parse_cov_components(wsh_desc.explicit_script)
    with pytest.raises(BadCovDescriptor):
        CovenantDescriptor.parse_cov_components(cov_script_code())

    # Nor are Scripts that slightly differ from the covenant checks.
    cov_desc = parse_desc(f"elcovwsh({cov_pk.hex()},pk({user_pk.hex()}))")
    script = bytes(cov_desc.explicit_script)
    with pytest.raises(BadCovDescriptor):
        CovenantDescriptor.parse_cov_components(CScript(script[:-1] + b"\xac"))


def test_cov_limits():
    key = DescriptorKey(keypair()[0])

    def chain_of_checksigs(n):
        ms = WrapC(Pk(key))
        for _ in range(n):
            ms = AndV(WrapV(WrapC(Pk(key))), ms)
        return ms

    # Each check executes a single operation, and the covenant adds its own.
    ms = chain_of_checksigs(MAX_OPS_PER_SCRIPT - COV_OPS_COUNT)
    assert ms.ops_count_sat + COV_OPS_COUNT - 1 == MAX_OPS_PER_SCRIPT
    CovenantDescriptor(key, ms)
    with pytest.raises(ImpossibleSatisfaction):
        CovenantDescriptor(key, chain_of_checksigs(MAX_OPS_PER_SCRIPT - COV_OPS_COUNT + 1))


def test_cov_satisfaction():
    (cov_pk, cov_priv), (user_pk, user_priv) = keypair(), keypair()
    desc = parse_desc(f"elcovwsh({cov_pk.hex()},pk({user_pk.hex()}))")
    cov_sig, user_sig = sign(cov_priv), sign(user_priv)
    items = sighash_items()
    material = SatisfactionMaterial(
        signatures={cov_pk: cov_sig, user_pk: user_sig}, **items
    )

    witness, script_sig = desc.get_satisfaction(material)
    assert script_sig == CScript()
    script_code = bytes(items["script_code"])
    assert witness == [
        cov_sig[:-1],
        (2).to_bytes(4, "little"),
        items["hash_prevouts"],
        items["hash_sequence"],
        items["hash_issuances"],
        items["outpoint"],
        compact_size(script_code) + script_code,
        items["value"],
        (0xFFFFFFFE).to_bytes(4, "little"),
        hash256(b"".join(items["outputs"])),
        bytes(4),
        (1).to_bytes(4, "little"),
        user_sig,
        bytes(desc.explicit_script),
    ]
    witness_weight = 1 + sum(len(compact_size(e)) + len(e) for e in witness)
    assert 4 + witness_weight <= desc.max_satisfaction_weight()

    # The interpreter recognizes the covenant and leaves the stack as it is to be
    # executed by its Script.
    inner, stack, spent_script_code = from_txdata(desc.script_pubkey, CScript(), witness)
    assert isinstance(inner, CovScriptInner)
    assert inner.key.bytes() == cov_pk
    assert str(inner.ms) == f"pk({user_pk.hex()})"
    assert spent_script_code == cov_script_code()
    assert len(stack) == 13
    assert stack.last() == Push(user_sig)


def test_cov_satisfaction_errors():
    (cov_pk, cov_priv), (user_pk, user_priv) = keypair(), keypair()
    desc = parse_desc(f"elcovwsh({cov_pk.hex()},pk({user_pk.hex()}))")
    signatures = {cov_pk: sign(cov_priv), user_pk: sign(user_priv)}

    # Each missing signature hash component is reported by its position.
    for index, item in enumerate(SatisfactionMaterial.SIGHASH_ITEMS, start=1):
        items = sighash_items()
        del items[item]
        with pytest.raises(MissingSighashItem) as exc_info:
            desc.get_satisfaction(SatisfactionMaterial(signatures=signatures, **items))
        assert exc_info.value.index == index

    items = sighash_items()
    del items["hash_sequence"]
    with pytest.raises(MissingSighashItem, match="#3"):
        desc.get_satisfaction(SatisfactionMaterial(signatures=signatures, **items))

    with pytest.raises(MissingCovSignature):
        desc.get_satisfaction(
            SatisfactionMaterial(
                signatures={user_pk: signatures[user_pk]}, **sighash_items()
            )
        )

    # The covenant signature commits to its sighash type, which must be the one given
    # as a component of the signature hash.
    with pytest.raises(CovenantSighashTypeMismatch):
        desc.get_satisfaction(
            SatisfactionMaterial(
                signatures=signatures, **sighash_items(sighash_type=0x81)
            )
        )

    # The covenant may be signed for, but the Miniscript must also be satisfied.
    with pytest.raises(ImpossibleSatisfaction):
        desc.get_satisfaction(
            SatisfactionMaterial(signatures={cov_pk: signatures[cov_pk]}, **sighash_items())
        )

    with pytest.raises(TypeError):
        SatisfactionMaterial(nversion=2)


def test_cov_key():
    """The covenant key signs with ECDSA, it must be a compressed key."""
    (user_pk, _) = keypair()
    xonly_pk = keypair()[0][1:]
    uncompressed_pk = coincurve.PrivateKey().public_key.format(compressed=False)
    for cov_key in [xonly_pk, uncompressed_pk]:
        with pytest.raises(DescriptorParsingError, match="Invalid covenant key"):
            parse_desc(f"elcovwsh({cov_key.hex()},pk({user_pk.hex()}))")
        with pytest.raises(BadCovDescriptor):
            CovenantDescriptor(DescriptorKey(cov_key), Node.from_str(f"pk({user_pk.hex()})"))

    # A covenant Script committing to an uncompressed key isn't a valid covenant.
    cov_pk = keypair()[0]
    desc = parse_desc(f"elcovwsh({cov_pk.hex()},pk({user_pk.hex()}))")
    script = bytes(desc.explicit_script)
    key_push = bytes([len(cov_pk)]) + cov_pk
    assert script.count(key_push) == 1
    script = script.replace(key_push, bytes([len(uncompressed_pk)]) + uncompressed_pk)
    with pytest.raises(BadCovDescriptor, match="Invalid covenant key"):
        CovenantDescriptor.parse_cov_components(CScript(script))


def test_introspection_fragments():
    ver_eq = Node.from_str("ver_eq(2)", ctx=Covenant)
    assert isinstance(ver_eq, VerEq) and ver_eq.version == 2
    assert str(ver_eq) == "ver_eq(2)"
    assert ver_eq.script == CScript(
        [OP_DEPTH, 2, OP_SUB, OP_PICK, bytes.fromhex("02000000"), OP_EQUAL]
    )
    assert len(ver_eq.script) == ver_eq.script_size
    assert str(ver_eq.p) == "Bzu"
    assert str(Node.from_script(ver_eq.script, ctx=Covenant)) == "ver_eq(2)"

    prefix = os.urandom(43)
    outputs_pref = Node.from_str(f"outputs_pref({prefix.hex()})", ctx=Covenant)
    assert isinstance(outputs_pref, OutputsPref) and outputs_pref.prefix == prefix
    assert outputs_pref.script == CScript(
        [prefix, OP_SWAP, OP_CAT, OP_HASH256, OP_DEPTH, 10, OP_SUB, OP_PICK, OP_EQUAL]
    )
    assert len(outputs_pref.script) == outputs_pref.script_size
    assert str(outputs_pref.p) == "Bou"
    assert Node.from_script(outputs_pref.script, ctx=Covenant).prefix == prefix

    # Their VERIFY form is decoded too.
    user_pk = keypair()[0]
    ms = Node.from_str(
        f"and_v(v:ver_eq(3),and_v(v:outputs_pref({prefix.hex()}),pk({user_pk.hex()})))",
        ctx=Covenant,
    )
    assert str(Node.from_script(ms.script, ctx=Covenant)) == str(ms)

    # They can only be used in covenants.
    for ctx in [Legacy, Segwitv0, Tap]:
        with pytest.raises(MiniscriptContextError, match="covenant"):
            Node.from_str("ver_eq(2)", ctx=ctx)
        with pytest.raises(MiniscriptContextError, match="covenant"):
            Node.from_script(ver_eq.script, ctx=ctx)
    with pytest.raises(DescriptorParsingError):
        parse_desc("elwsh(ver_eq(2))")
    with pytest.raises(DescriptorParsingError):
        parse_desc(f"elsh(and_v(v:pk({user_pk.hex()}),ver_eq(2)))")

    with pytest.raises(MiniscriptMalformed):
        Node.from_str(f"ver_eq({2 ** 32})", ctx=Covenant)
    with pytest.raises(MiniscriptMalformed):
        Node.from_str("outputs_pref(zz)", ctx=Covenant)
    with pytest.raises(MiniscriptMalformed):
        Node.from_str(f"outputs_pref({bytes(521).hex()})", ctx=Covenant)


def test_cov_introspection_satisfaction():
    (cov_pk, cov_priv), (user_pk, user_priv) = keypair(), keypair()
    items = sighash_items()
    outputs = b"".join(items["outputs"])
    prefix = items["outputs"][0]
    ms_str = (
        f"and_v(v:pk({user_pk.hex()}),and_v(v:ver_eq(2),outputs_pref({prefix.hex()})))"
    )
    desc = parse_desc(f"elcovwsh({cov_pk.hex()},{ms_str})")
    desc.sanity_check()
    assert CovenantDescriptor.parse(desc.explicit_script) == desc

    cov_sig, user_sig = sign(cov_priv), sign(user_priv)
    signatures = {cov_pk: cov_sig, user_pk: user_sig}
    witness, script_sig = desc.get_satisfaction(
        SatisfactionMaterial(signatures=signatures, **items)
    )
    assert script_sig == CScript()
    # The Miniscript is satisfied by the signature and the outputs following the prefix,
    # whose hash along with the prefix is the hashOutputs component of the covenant.
    assert len(witness) == 15
    assert witness[12:14] == [outputs[len(prefix):], user_sig]
    assert hash256(prefix + witness[12]) == witness[9]
    # The version is read from the covenant items.
    assert witness[1] == (2).to_bytes(4, "little")
    witness_weight = 1 + sum(len(compact_size(e)) + len(e) for e in witness)
    assert 4 + witness_weight <= desc.max_satisfaction_weight()

    # The interpreter recognizes the introspection fragments.
    inner, stack, _ = from_txdata(desc.script_pubkey, CScript(), witness)
    assert isinstance(inner, CovScriptInner)
    assert inner.key.bytes() == cov_pk
    assert str(inner.ms) == ms_str
    assert stack.last() == Push(user_sig)

    # Another transaction version or other outputs can't satisfy it.
    with pytest.raises(ImpossibleSatisfaction):
        desc.get_satisfaction(
            SatisfactionMaterial(signatures=signatures, **sighash_items(n_version=1))
        )
    with pytest.raises(ImpossibleSatisfaction):
        desc.get_satisfaction(
            SatisfactionMaterial(
                signatures=signatures,
                **sighash_items(outputs=list(reversed(items["outputs"]))),
            )
        )
