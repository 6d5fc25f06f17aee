import os
import pytest

from bip32 import BIP32
from elements_miniscript.key import DescriptorKey
from elements_miniscript.miniscript import fragments, Node, SatisfactionMaterial
from elements_miniscript.miniscript.context import Bare, Legacy, Segwitv0, Tap
from elements_miniscript.miniscript.errors import (
    MiniscriptAnalysisError,
    MiniscriptContextError,
    MiniscriptMalformed,
)
from elements_miniscript.utils.hashes import hash160, hash256, sha256
from elements_miniscript.utils.script import (
    CScript,
    OP_CHECKSIG,
    OP_CHECKSIGADD,
    OP_EQUAL,
    OP_NUMEQUAL,
)
from embit.hashes import ripemd160


def dummy_pk():
    return BIP32.from_seed(os.urandom(32)).get_pubkey_from_path("m").hex()


def dummy_xonly_pk():
    return dummy_pk()[2:]


def dummy_h256():
    return os.urandom(32).hex()


def dummy_h160():
    return os.urandom(20).hex()


def dummy_sig(i):
    """A DER-like blob, only its size matters to the satisfier."""
    return b"\x30" + i.to_bytes(1, "big") * 70 + b"\x01"


def roundtrip(ms_str, ctx=Segwitv0):
    """Test we can parse to and from Script and string representation.

    Note that the Script representation does not necessarily roundtrip. However
    it must be deterministic.
    """
    node_a = Node.from_str(ms_str, ctx=ctx)
    node_b = Node.from_script(node_a.script, ctx=ctx)

    assert node_b.script == Node.from_script(node_b.script, ctx=ctx).script
    assert str(node_b) == str(Node.from_str(str(node_b), ctx=ctx))
    assert node_b.script_size == len(node_b.script)

    return node_b


def test_simple_sanity_checks():
    """Some quick and basic sanity checks of the implem. The place to add new findings."""

    not_aliased = Node.from_str(
        "and_v(vc:pk_k(027a1b8c69c6a4e90ce85e0dd6fb99c51ef8af35b88f20f9f74f8f937f7acaec15),c:pk_k(023c110f0946ed6160ee95eee86efb79d13421d1b460f592b04dd21d74852d7631))"
    )
    aliased = Node.from_str(
        "and_v(v:pk(027a1b8c69c6a4e90ce85e0dd6fb99c51ef8af35b88f20f9f74f8f937f7acaec15),pk(023c110f0946ed6160ee95eee86efb79d13421d1b460f592b04dd21d74852d7631))"
    )
    assert aliased.script == not_aliased.script

    assert roundtrip("older(1)").value == 1
    assert roundtrip("older(16407)").value == 16407
    assert roundtrip("after(255)").value == 255
    assert roundtrip("after(1621038656)").value == 1621038656
    # CSV with a negative value
    with pytest.raises(MiniscriptMalformed):
        Node.from_script(CScript(b"\x86\x92\xB2"))
    # CLTV with a negative value
    with pytest.raises(MiniscriptMalformed):
        Node.from_script(CScript(b"\x86\x92\xB1"))

    roundtrip(f"pk({dummy_pk()})")
    roundtrip(f"pk_k({dummy_pk()})")
    roundtrip(f"pkh({dummy_pk()})")
    roundtrip(f"sha256({dummy_h256()})")
    roundtrip(f"hash256({dummy_h256()})")
    roundtrip(f"ripemd160({dummy_h160()})")
    roundtrip(f"hash160({dummy_h160()})")
    roundtrip(f"multi(1,{dummy_pk()})")
    roundtrip(f"multi(2,{dummy_pk()},{dummy_pk()},{dummy_pk()})")
    roundtrip(f"and_v(and_v(vc:pk_k({dummy_pk()}),vc:pk_k({dummy_pk()})),older(2))")
    roundtrip(
        f"or_b(c:pk_k({dummy_pk()}),a:and_n(c:pk_k({dummy_pk()}),c:pk_k({dummy_pk()})))"
    )
    roundtrip(f"or_d(c:pk_k({dummy_pk()}),c:pk_k({dummy_pk()}))")
    roundtrip(
        f"t:or_c(c:pk_k({dummy_pk()}),and_v(vc:pk_k({dummy_pk()}),or_c(c:pk_k({dummy_pk()}),v:hash160({dummy_h160()}))))"
    )
    roundtrip(f"or_i(and_v(vc:pk_k({dummy_pk()}),hash256({dummy_h256()})),older(20))")
    roundtrip(f"andor(c:pk_k({dummy_pk()}),older(25),c:pk_k({dummy_pk()}))")
    roundtrip(
        f"thresh(3,c:pk_k({dummy_pk()}),sc:pk_k({dummy_pk()}),sc:pk_k({dummy_pk()}),sndv:after(30))"
    )
    roundtrip(f"uuj:and_v(v:multi(2,{dummy_pk()},{dummy_pk()}),after(10))")
    roundtrip(
        f"or_b(or_i(n:multi(1,{dummy_pk()},{dummy_pk()}),0),a:or_i(0,older(1111)))"
    )
    roundtrip(f"llllllllllllllllllllllllllllll:pk({dummy_pk()})")

    # Under Tapscript, with x-only keys.
    roundtrip(f"pk({dummy_xonly_pk()})", ctx=Tap)
    roundtrip(f"and_v(v:pk({dummy_xonly_pk()}),pk({dummy_xonly_pk()}))", ctx=Tap)
    roundtrip(f"or_d(pk({dummy_xonly_pk()}),and_v(v:pkh({dummy_xonly_pk()}),older(12)))", ctx=Tap)


def test_script_contexts():
    """The keys and fragments allowed depend on the script context."""
    uncompressed_pk = "045edd5cc23c51e87a497ca815d5dce0f8ab52554f849ed8995de64c5f34ce7143efae9c8dbc14130661e8cec030c89ad0c13c66c0d17a2905cdc706ab7399a868"

    # Uncompressed keys are only allowed in legacy contexts.
    for ctx in [Legacy, Bare]:
        ms = Node.from_str(f"pk({uncompressed_pk})", ctx=ctx)
        assert ms.pubkey.is_uncompressed() if hasattr(ms, "pubkey") else True
        assert len(ms.script) == 67
    with pytest.raises(MiniscriptContextError):
        Node.from_str(f"pk({uncompressed_pk})", ctx=Segwitv0)

    # multi() is not available under Tapscript, multi_a() only is.
    with pytest.raises(MiniscriptContextError):
        Node.from_str(f"multi(1,{dummy_xonly_pk()})", ctx=Tap)
    with pytest.raises(MiniscriptContextError):
        Node.from_str(f"multi_a(1,{dummy_pk()})", ctx=Segwitv0)
    with pytest.raises(MiniscriptContextError):
        Node.from_str(f"multi_a(1,{dummy_pk()})", ctx=Legacy)

    # The top level Script must be of type B.
    ms = Node.from_str(f"v:pk({dummy_pk()})")
    with pytest.raises(MiniscriptContextError):
        Segwitv0.top_level_checks(ms)
    Segwitv0.top_level_checks(Node.from_str(f"pk({dummy_pk()})"))


def test_sanity_check():
    """Sanity checks detect unsafe Miniscripts."""
    pk_a, pk_b = dummy_pk(), dummy_pk()

    Node.from_str(f"and_v(v:pk({pk_a}),older(10))").sanity_check(Segwitv0)
    Node.from_str(f"or_d(pk({pk_a}),and_v(v:pk({pk_b}),older(10)))").sanity_check()

    # No signature needed
    with pytest.raises(MiniscriptAnalysisError):
        Node.from_str("older(10)").sanity_check()
    with pytest.raises(MiniscriptAnalysisError):
        Node.from_str(f"or_i(pk({pk_a}),older(10))").sanity_check()
    # Repeated keys
    with pytest.raises(MiniscriptAnalysisError):
        Node.from_str(f"and_v(v:pk({pk_a}),pk({pk_a}))").sanity_check()
    # Mix of heightlocks and timelocks
    with pytest.raises(MiniscriptAnalysisError):
        Node.from_str(
            f"and_v(v:pk({pk_a}),and_v(v:after(100),after(1000000000)))"
        ).sanity_check()


def test_timelock_conflicts():
    # Absolute timelock simple conflicts
    assert Node.from_str("after(100)").no_timelock_mix
    assert Node.from_str("after(1000000000)").no_timelock_mix
    assert not Node.from_str("and_b(after(100),a:after(1000000000))").no_timelock_mix
    assert not Node.from_str("and_v(v:after(1000000000),after(100))").no_timelock_mix
    assert not Node.from_str("and_n(ndv:after(100),after(1000000000))").no_timelock_mix
    assert not Node.from_str(
        "andor(ndv:after(1000000000),after(100),after(1))"
    ).no_timelock_mix
    assert Node.from_str("andor(ndv:after(100),after(1),after(1000000000))").no_timelock_mix
    assert Node.from_str("or_b(dv:after(100),adv:after(1000000000))").no_timelock_mix
    assert Node.from_str("or_c(ndv:after(1000000000),v:after(100))").no_timelock_mix
    assert Node.from_str("or_d(ndv:after(100),after(1000000000))").no_timelock_mix
    assert Node.from_str("or_i(after(100),after(1000000004))").no_timelock_mix
    assert Node.from_str("thresh(1,ndv:after(1000000007),andv:after(12))").no_timelock_mix
    assert not Node.from_str(
        "thresh(2,ndv:after(1000000007),andv:after(12))"
    ).no_timelock_mix

    # Relative timelock simple conflicts
    assert Node.from_str("older(4194304)").no_timelock_mix
    assert not Node.from_str("and_b(older(100),a:older(4194304))").no_timelock_mix
    assert not Node.from_str("and_v(v:older(4194304),older(100))").no_timelock_mix
    assert Node.from_str("or_i(older(100),older(4194304))").no_timelock_mix
    assert not Node.from_str(
        "thresh(2,ndv:older(12),andv:older(4194307),andv:older(3))"
    ).no_timelock_mix

    # There is no mix across relative and absolute timelocks
    assert Node.from_str("and_v(v:after(100),older(4194304))").no_timelock_mix
    assert Node.from_str(
        "thresh(2,ndv:older(12),andv:after(1000000000),andv:older(3))"
    ).no_timelock_mix

    # Two cases from the C++ unit tests
    assert not Node.from_str(
        "thresh(2,ltv:after(1000000000),altv:after(100),a:pk(03d30199d74fb5a22d47b6e054e2f378cedacffcb89904a61d75d0dbd407143e65))"
    ).no_timelock_mix
    assert Node.from_str(
        "thresh(1,c:pk_k(03d30199d74fb5a22d47b6e054e2f378cedacffcb89904a61d75d0dbd407143e65),altv:after(1000000000),altv:after(100))"
    ).no_timelock_mix


def test_satisfaction_cost():
    """Test the calculation of the satisfaction cost in resources (number of ops and stack size)."""
    # Vectors from the C++ implem.
    vectors = [
        # Miniscript, OPs cost, stack size (without the P2WSH script push)
        ["lltvln:after(1231488000)", 12, 3],
        [
            "uuj:and_v(v:multi(2,03d01115d548e7561b15c38f004d734633687cf4419620095bc5b0f47070afe85a,025601570cb47f238d2b0286db4a990fa0f3ba28d1a319f5e7cf55c2a2444da7cc),after(1231488000))",
            14,
            5,
        ],
        ["j:and_v(vdv:after(1567547623),older(2016))", 11, 1],
        [
            "or_d(sha256(38df1c1f64a24a77b23393bca50dff872e31edc4f3b5aa3b90ad0b82f4f089b6),and_n(un:after(499999999),older(4194305)))",
            16,
            1,
        ],
        [
            "and_b(older(16),s:or_d(sha256(e38990d0c7fc009880a9c07c23842e886c6bbdc964ce6bdd5817ad357335ee6f),n:after(1567547623)))",
            12,
            1,
        ],
        [
            "thresh(2,c:pk_h(025cbdf0646e5db4eaa398f365f2ea7a0e3d419b7e0330e39ce92bddedcac4f9bc),s:sha256(e38990d0c7fc009880a9c07c23842e886c6bbdc964ce6bdd5817ad357335ee6f),a:hash160(dd69735817e0e3f6f826a9238dc2e291184f0131))",
            18,
            4,
        ],
        [
            "c:or_i(and_v(v:older(16),pk_h(02d7924d4f7d43ea965a465ae3095ff41131e5946f3c85f79e44adbcf8e27e080e)),pk_h(026a245bf6dc698504c89a20cfded60853152b695336c28063b61c65cbd269e6b4))",
            12,
            3,
        ],
        [
            "thresh(2,c:pk_k(03d30199d74fb5a22d47b6e054e2f378cedacffcb89904a61d75d0dbd407143e65),ac:pk_k(03fff97bd5755eeea420453a14355235d382f6472f8568a18b2f057a1460297556),altv:after(1000000000),altv:after(100))",
            22,
            4,
        ],
    ]

    for ms_str, op_cost, sat_cost in vectors:
        ms = Node.from_str(ms_str)
        assert ms.exec_info.ops_count == op_cost
        assert ms.exec_info.sat_elems == sat_cost
        assert ms.ops_count_sat == op_cost
        assert ms.max_satisfaction_witness_elements() == sat_cost + 1


def test_free_verify():
    """Whether the VERIFY of a v: wrapper is merged in the last opcode."""
    pk = dummy_pk()
    assert Node.from_str(f"pk({pk})").has_free_verify
    assert Node.from_str(f"multi(1,{pk})").has_free_verify
    assert Node.from_str(f"sha256({dummy_h256()})").has_free_verify
    assert not Node.from_str("older(1)").has_free_verify
    assert not Node.from_str(f"or_d(pk({pk}),pk({dummy_pk()}))").has_free_verify
    assert Node.from_str(f"and_v(v:older(1),pk({pk}))").has_free_verify

    ms = Node.from_str(f"v:pk({pk})")
    assert ms.script[-1] == 0xAD  # CHECKSIGVERIFY
    assert ms.script_size == Node.from_str(f"pk({pk})").script_size
    ms = Node.from_str("v:older(1)")
    assert ms.script_size == Node.from_str("older(1)").script_size + 1


def test_satisfy_simple_combs():
    """Test the satisfaction logic of most fragments and simple combinations of them."""
    hd = BIP32.from_seed(os.urandom(32))
    pubkeys = [hd.get_pubkey_from_path([i]) for i in range(5)]
    keys = [DescriptorKey(k) for k in pubkeys]
    sigs = [dummy_sig(i) for i in range(5)]

    timelock = 11
    preimage = bytes(32)
    sat_material = SatisfactionMaterial()
    for h_func, digest in [
        (fragments.Sha256, sha256(preimage)),
        (fragments.Hash256, hash256(preimage)),
        (fragments.Ripemd160, ripemd160(preimage)),
        (fragments.Hash160, hash160(preimage)),
    ]:
        h_frag = h_func(digest)
        # Without the preimage in the material, it can't satisfy it
        assert h_frag.satisfaction(sat_material).witness is None
        # Now if we set it it'll be able to
        sat_material.preimages[h_frag.digest] = preimage
        assert h_frag.satisfaction(sat_material).witness == [preimage]
        or_frag = fragments.OrB(
            h_frag,
            fragments.WrapS(fragments.WrapD(fragments.WrapV(fragments.Older(timelock)))),
        )
        # Without the ability to satisfy the timelock, it'll choose the hash path.
        sat_material.max_sequence = 0
        assert or_frag.satisfaction(sat_material).witness == [b"", preimage]
        # But if we tell it the timelock can be satisfied it'll still not choose that since
        # dissatisfying a hash is malleable.
        sat_material.max_sequence = timelock
        assert or_frag.satisfaction(sat_material).witness == [b"", preimage]
        # Now if we make it non-malleably dissatisfiable, it'll choose the timelock path as it's cheaper.
        or_frag = fragments.OrB(
            fragments.WrapJ(h_frag),
            fragments.WrapS(fragments.WrapD(fragments.WrapV(fragments.Older(timelock)))),
        )
        assert or_frag.satisfaction(sat_material).witness == [b"\x01", b""]
        sat_material.clear()

    pk_frag_a = fragments.Pk(keys[0])
    pkh_frag = fragments.Pkh(keys[2])
    or_i_frag = fragments.OrI(pk_frag_a, pkh_frag)
    # No signature, no satisfaction.
    assert or_i_frag.satisfaction(sat_material).witness is None
    # Need only one side for having a satisfaction
    sat_material.signatures[pubkeys[2]] = sigs[2]
    assert or_i_frag.satisfaction(sat_material).witness == [sigs[2], pubkeys[2], b""]
    # However if the pk() satisfaction is also available, it'll choose it as it's smaller
    sat_material.signatures[pubkeys[0]] = sigs[0]
    assert or_i_frag.satisfaction(sat_material).witness == [sigs[0], b"\x01"]
    sat_material.clear()

    check_pk_a = fragments.WrapC(fragments.Pk(keys[0]))
    check_pk_b = fragments.WrapC(fragments.Pk(keys[1]))
    or_c_frag = fragments.OrC(check_pk_a, fragments.WrapV(check_pk_b))
    assert or_c_frag.satisfaction(sat_material).witness is None
    sat_material.signatures[pubkeys[0]] = sigs[0]
    assert or_c_frag.satisfaction(sat_material).witness == [sigs[0]]
    sat_material.signatures[pubkeys[1]] = sigs[1]
    assert or_c_frag.satisfaction(sat_material).witness == [sigs[0]]
    del sat_material.signatures[pubkeys[0]]
    assert or_c_frag.satisfaction(sat_material).witness == [sigs[1], b""]
    sat_material.clear()

    # The signatures of a multi() are pushed in the order of the keys, after the dummy
    # element.
    multi_frag = fragments.Multi(2, keys[:3])
    sat_material.signatures[pubkeys[2]] = sigs[2]
    assert multi_frag.satisfy(sat_material) is None
    sat_material.signatures[pubkeys[0]] = sigs[0]
    assert multi_frag.satisfy(sat_material) == [b"", sigs[0], sigs[2]]
    assert multi_frag.dissatisfaction().witness == [b"", b"", b""]


def test_satisfy_malleable():
    """A malleable satisfaction may be smaller than the non-malleable one."""
    pk = dummy_pk()
    preimage = os.urandom(32)
    ms = Node.from_str(
        f"or_d(pk({pk}),sha256({sha256(preimage).hex()}))"
    )
    sat_material = SatisfactionMaterial(
        preimages={sha256(preimage): preimage},
        signatures={bytes.fromhex(pk): dummy_sig(1)},
    )
    # With both available, the non-malleable satisfier won't use the preimage as it
    # can be used by anyone to malleate the witness.
    assert ms.satisfy(sat_material) == [dummy_sig(1)]
    # Without the signature, the preimage may only be used malleably.
    del sat_material.signatures[bytes.fromhex(pk)]
    assert ms.satisfy_malleable(sat_material) == [preimage, b""]


def test_multi_is_expressive():
    frag = Node.from_str(f"or_b(pk({dummy_pk()}),a:multi(1,{dummy_pk()},{dummy_pk()}))")
    assert frag.is_nonmalleable


def test_multi_a():
    # Get a raw x-only public key
    def pk():
        return bytes.fromhex(dummy_xonly_pk())

    # Make sure we roundtrip under various conditions.
    roundtrip(f"multi_a(1,{pk().hex()})", ctx=Tap)
    roundtrip(f"multi_a(2,{pk().hex()},{pk().hex()})", ctx=Tap)
    roundtrip(f"multi_a(1,{pk().hex()},{pk().hex()},{pk().hex()})", ctx=Tap)
    ms_str = "multi_a(42," + ",".join(pk().hex() for _ in range(999)) + ")"
    roundtrip(ms_str, ctx=Tap)

    # Make sure we detect some pathological cases, especially when parsing from Script.
    with pytest.raises(MiniscriptMalformed):
        Node.from_str(f"multi_a(2,{pk().hex()})", ctx=Tap)
    with pytest.raises(MiniscriptMalformed):
        Node.from_script(CScript([pk(), OP_CHECKSIGADD, 1, OP_NUMEQUAL]), ctx=Tap)
    with pytest.raises(MiniscriptMalformed):
        Node.from_script(
            CScript([pk(), OP_CHECKSIG, pk(), OP_CHECKSIG, 1, OP_NUMEQUAL]), ctx=Tap
        )
    with pytest.raises(MiniscriptMalformed):
        Node.from_script(
            CScript([pk(), OP_CHECKSIG, pk(), OP_CHECKSIGADD, 1, OP_EQUAL]), ctx=Tap
        )

    # Test all the combinations for a 2-of-3. The signature for the first key is
    # checked first, it's on top of the stack.
    pubkeys = [pk() for _ in range(3)]
    sig_a, sig_b, sig_c = bytes(64), int(1).to_bytes(64, "big"), int(2).to_bytes(64, "big")
    ms = fragments.MultiA(2, [DescriptorKey(k) for k in pubkeys])
    sat_material = SatisfactionMaterial()
    assert ms.satisfy(sat_material) is None
    sat_material.signatures[pubkeys[0]] = sig_a
    assert ms.satisfy(sat_material) is None
    sat_material.signatures[pubkeys[1]] = sig_b
    assert ms.satisfy(sat_material) == [b"", sig_b, sig_a]
    sat_material.signatures[pubkeys[2]] = sig_c
    assert ms.satisfy(sat_material) == [b"", sig_b, sig_a]
    del sat_material.signatures[pubkeys[0]]
    assert ms.satisfy(sat_material) == [sig_c, sig_b, b""]
    sat_material.signatures[pubkeys[0]] = sig_a
    del sat_material.signatures[pubkeys[1]]
    assert ms.satisfy(sat_material) == [sig_c, b"", sig_a]
