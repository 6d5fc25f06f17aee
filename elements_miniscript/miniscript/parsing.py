"""
Utilities to parse Miniscript from string and Script representations.
"""

from . import fragments

from ..key import DescriptorKey, DescriptorKeyError
from .errors import MiniscriptMalformed, MiniscriptNodeCreationError
from ..utils.script import (
    CScriptInvalidError,
    CScriptOp,
    OP_ADD,
    OP_BOOLAND,
    OP_BOOLOR,
    OP_CHECKSIGADD,
    OP_CHECKSIGVERIFY,
    OP_CHECKMULTISIGVERIFY,
    OP_EQUALVERIFY,
    OP_DUP,
    OP_ELSE,
    OP_ENDIF,
    OP_EQUAL,
    OP_FROMALTSTACK,
    OP_IFDUP,
    OP_IF,
    OP_CHECKLOCKTIMEVERIFY,
    OP_CHECKMULTISIG,
    OP_CHECKSEQUENCEVERIFY,
    OP_CHECKSIG,
    OP_CAT,
    OP_HASH160,
    OP_HASH256,
    OP_NOTIF,
    OP_NUMEQUAL,
    OP_NUMEQUALVERIFY,
    OP_RIPEMD160,
    OP_SHA256,
    OP_SIZE,
    OP_SWAP,
    OP_TOALTSTACK,
    OP_VERIFY,
    OP_0NOTEQUAL,
    ScriptNumError,
    read_script_number,
)


def stack_item_to_int(item):
    """
    Convert a stack item to an integer depending on its type.
    May raise an exception if the item is bytes, otherwise return None if it
    cannot perform the conversion.
    """
    if isinstance(item, bytes):
        return read_script_number(item)

    if isinstance(item, fragments.Node):
        if isinstance(item, fragments.Just1):
            return 1
        if isinstance(item, fragments.Just0):
            return 0

    # Opcodes are ints too.
    if isinstance(item, int) and not isinstance(item, CScriptOp):
        return item

    return None


def try_int(item):
    """Same as stack_item_to_int but returns None on invalid numbers."""
    try:
        return stack_item_to_int(item)
    except ScriptNumError:
        return None


def is_ecdsa_key_push(elem):
    return isinstance(elem, bytes) and (
        len(elem) == 33
        and elem[0] in [2, 3]
        or len(elem) == 65
        and elem[0] == 4
    )


def is_xonly_key_push(elem):
    return isinstance(elem, bytes) and len(elem) == 32


def decompose_script(script):
    """Create a list of Script element from a CScript, decomposing the compact
    -VERIFY opcodes into the non-VERIFY OP and an OP_VERIFY.
    """
    elems = []
    try:
        for elem in script:
            if elem == OP_CHECKSIGVERIFY:
                elems += [OP_CHECKSIG, OP_VERIFY]
            elif elem == OP_CHECKMULTISIGVERIFY:
                elems += [OP_CHECKMULTISIG, OP_VERIFY]
            elif elem == OP_EQUALVERIFY:
                elems += [OP_EQUAL, OP_VERIFY]
            elif elem == OP_NUMEQUALVERIFY:
                elems += [OP_NUMEQUAL, OP_VERIFY]
            else:
                elems.append(elem)
    except CScriptInvalidError as e:
        raise MiniscriptMalformed(f"Invalid Script: {e}") from e
    return elems


def parse_term_multi(expr_list, idx, ctx):
    """
    Try to parse a multi() from the elements of {expr_list} starting at {idx}.
    Return the new expression list on success, None if there was no match.
    """
    # <k> (<key>)* <n> CHECKMULTISIG
    k = try_int(expr_list[idx])
    if k is None:
        return
    keys = []
    i = idx + 1
    while i < len(expr_list) and is_ecdsa_key_push(expr_list[i]):
        keys.append(expr_list[i])
        i += 1
    if len(keys) == 0 or i + 1 >= len(expr_list):
        return
    if expr_list[i + 1] != OP_CHECKMULTISIG:
        return
    if try_int(expr_list[i]) != len(keys) or not 1 <= k <= len(keys):
        return

    node = fragments.Multi(k, [DescriptorKey(key) for key in keys])
    expr_list[idx: i + 2] = [node]
    return expr_list


def parse_term_multi_a(expr_list, idx, ctx):
    """
    Try to parse a multi_a() from the elements of {expr_list} starting at {idx}.
    Return the new expression list on success, None if there was no match.
    """
    # <key> CHECKSIG (<key> CHECKSIGADD)* <k> NUMEQUAL
    if not is_xonly_key_push(expr_list[idx]):
        return
    if idx + 1 >= len(expr_list) or expr_list[idx + 1] != OP_CHECKSIG:
        return
    keys = [expr_list[idx]]
    i = idx + 2
    while (
        i + 1 < len(expr_list)
        and is_xonly_key_push(expr_list[i])
        and expr_list[i + 1] == OP_CHECKSIGADD
    ):
        keys.append(expr_list[i])
        i += 2
    if i + 1 >= len(expr_list) or expr_list[i + 1] != OP_NUMEQUAL:
        return
    k = try_int(expr_list[i])
    if k is None or not 1 <= k <= len(keys):
        return

    node = fragments.MultiA(k, [DescriptorKey(key, x_only=True) for key in keys])
    expr_list[idx: i + 2] = [node]
    return expr_list


def parse_term_introspection(expr_list, idx, ctx):
    """
    Try to parse a fragment reading a covenant signature hash component from the
    elements of {expr_list} starting at {idx}.
    Return the new expression list on success, None if there was no match.
    """
    # OP_DEPTH <2> OP_SUB OP_PICK <version> OP_EQUAL
    ver_pick = fragments.pick_cov_item(fragments.COV_N_VERSION_POSITION)
    if expr_list[idx : idx + 4] == ver_pick and idx + 5 < len(expr_list):
        version = expr_list[idx + 4]
        if (
            isinstance(version, bytes)
            and len(version) == 4
            and expr_list[idx + 5] == OP_EQUAL
        ):
            node = fragments.VerEq(int.from_bytes(version, "little"))
            expr_list[idx : idx + 6] = [node]
            return expr_list

    # <prefix> OP_SWAP OP_CAT OP_HASH256 OP_DEPTH <10> OP_SUB OP_PICK OP_EQUAL
    prefix = expr_list[idx]
    outputs_check = (
        [OP_SWAP, OP_CAT, OP_HASH256]
        + fragments.pick_cov_item(fragments.COV_HASH_OUTPUTS_POSITION)
        + [OP_EQUAL]
    )
    if (
        isinstance(prefix, bytes)
        and len(prefix) > 0
        and expr_list[idx + 1 : idx + 9] == outputs_check
    ):
        node = fragments.OutputsPref(prefix)
        expr_list[idx : idx + 9] = [node]
        return expr_list


def parse_term_single_elem(expr_list, idx, ctx):
    """
    Try to parse a terminal node from the element of {expr_list} at {idx}.
    """
    # Match against pk_k(key).
    if ctx.is_taproot and is_xonly_key_push(expr_list[idx]):
        expr_list[idx] = fragments.Pk(expr_list[idx], is_taproot=True)
    elif not ctx.is_taproot and is_ecdsa_key_push(expr_list[idx]):
        expr_list[idx] = fragments.Pk(expr_list[idx])

    # Match against JUST_1 and JUST_0.
    if expr_list[idx] == 1:
        expr_list[idx] = fragments.Just1()
    if expr_list[idx] == b"":
        expr_list[idx] = fragments.Just0()


def parse_term_2_elems(expr_list, idx, ctx):
    """
    Try to parse a terminal node from two elements of {expr_list}, starting
    from {idx}.
    Return the new expression list on success, None if there was no match.
    """
    elem_a = expr_list[idx]
    elem_b = expr_list[idx + 1]

    # Only older() and after() as term with 2 stack items
    if not isinstance(elem_b, CScriptOp):
        return
    n = try_int(elem_a)
    if n is None:
        return

    if n <= 0 or n >= 2 ** 31:
        return

    if elem_b == OP_CHECKSEQUENCEVERIFY:
        node = fragments.Older(n)
        expr_list[idx: idx + 2] = [node]
        return expr_list

    if elem_b == OP_CHECKLOCKTIMEVERIFY:
        node = fragments.After(n)
        expr_list[idx: idx + 2] = [node]
        return expr_list


def parse_term_5_elems(expr_list, idx, ctx, pkh_preimages={}):
    """
    Try to parse a terminal node from five elements of {expr_list}, starting
    from {idx}.
    Return the new expression list on success, None if there was no match.
    """
    # The only 5 items node is pk_h
    if expr_list[idx: idx + 2] != [OP_DUP, OP_HASH160]:
        return
    if not isinstance(expr_list[idx + 2], bytes):
        return
    if len(expr_list[idx + 2]) != 20:
        return
    if expr_list[idx + 3: idx + 5] != [OP_EQUAL, OP_VERIFY]:
        return

    # Without the key, only its hash is known.
    key_hash = expr_list[idx + 2]
    key = pkh_preimages.get(key_hash, key_hash)
    node = fragments.Pkh(key, is_taproot=ctx.is_taproot)
    expr_list[idx: idx + 5] = [node]
    return expr_list


def parse_term_7_elems(expr_list, idx, ctx):
    """
    Try to parse a terminal node from seven elements of {expr_list}, starting
    from {idx}.
    Return the new expression list on success, None if there was no match.
    """
    # Note how all the hashes are 7 elems because the VERIFY was decomposed
    hash_fragments = [
        (OP_SHA256, 32, fragments.Sha256),
        (OP_HASH256, 32, fragments.Hash256),
        (OP_RIPEMD160, 20, fragments.Ripemd160),
        (OP_HASH160, 20, fragments.Hash160),
    ]
    if expr_list[idx: idx + 4] != [OP_SIZE, b"\x20", OP_EQUAL, OP_VERIFY]:
        return
    for hash_op, digest_len, frag in hash_fragments:
        if (
            expr_list[idx + 4] == hash_op
            and isinstance(expr_list[idx + 5], bytes)
            and len(expr_list[idx + 5]) == digest_len
            and expr_list[idx + 6] == OP_EQUAL
        ):
            node = frag(expr_list[idx + 5])
            expr_list[idx: idx + 7] = [node]
            return expr_list


def parse_nonterm_2_elems(expr_list, idx, ctx):
    """
    Try to parse a non-terminal node from two elements of {expr_list}, starting
    from {idx}.
    Return the new expression list on success, None if there was no match.
    """
    elem_a = expr_list[idx]
    elem_b = expr_list[idx + 1]

    if isinstance(elem_a, fragments.Node):
        # Match against and_v.
        if (
            isinstance(elem_b, fragments.Node)
            and elem_a.p.V
            and elem_b.p.has_any("BKV")
        ):
            # Is it a special case of t: wrapper?
            if isinstance(elem_b, fragments.Just1):
                node = fragments.WrapT(elem_a)
            else:
                node = fragments.AndV(elem_a, elem_b)
            expr_list[idx: idx + 2] = [node]
            return expr_list

        # Match against c wrapper.
        if elem_b == OP_CHECKSIG and elem_a.p.K:
            node = fragments.WrapC(elem_a, is_taproot=ctx.is_taproot)
            expr_list[idx: idx + 2] = [node]
            return expr_list

        # Match against v wrapper.
        if elem_b == OP_VERIFY and elem_a.p.B:
            node = fragments.WrapV(elem_a)
            expr_list[idx: idx + 2] = [node]
            return expr_list

        # Match against n wrapper.
        if elem_b == OP_0NOTEQUAL and elem_a.p.B:
            node = fragments.WrapN(elem_a)
            expr_list[idx: idx + 2] = [node]
            return expr_list

    # Match against s wrapper.
    if (
        isinstance(elem_b, fragments.Node)
        and elem_a == OP_SWAP
        and elem_b.p.has_all("Bo")
    ):
        node = fragments.WrapS(elem_b)
        expr_list[idx: idx + 2] = [node]
        return expr_list


def parse_nonterm_3_elems(expr_list, idx, ctx):
    """
    Try to parse a non-terminal node from three elements of {expr_list}, starting
    from {idx}.
    Return the new expression list on success, None if there was no match.
    """
    elem_a = expr_list[idx]
    elem_b = expr_list[idx + 1]
    elem_c = expr_list[idx + 2]

    if isinstance(elem_a, fragments.Node) and isinstance(elem_b, fragments.Node):
        # Match against and_b.
        if elem_c == OP_BOOLAND and elem_a.p.B and elem_b.p.W:
            node = fragments.AndB(elem_a, elem_b)
            expr_list[idx: idx + 3] = [node]
            return expr_list

        # Match against or_b.
        if (
            elem_c == OP_BOOLOR
            and elem_a.p.has_all("Bd")
            and elem_b.p.has_all("Wd")
        ):
            node = fragments.OrB(elem_a, elem_b)
            expr_list[idx: idx + 3] = [node]
            return expr_list

    # Match against a wrapper.
    if (
        elem_a == OP_TOALTSTACK
        and isinstance(elem_b, fragments.Node)
        and elem_b.p.B
        and elem_c == OP_FROMALTSTACK
    ):
        node = fragments.WrapA(elem_b)
        expr_list[idx: idx + 3] = [node]
        return expr_list


def parse_nonterm_4_elems(expr_list, idx, ctx):
    """
    Try to parse a non-terminal node from at least four elements of {expr_list},
    starting from {idx}.
    Return the new expression list on success, None if there was no match.
    """
    (it_a, it_b, it_c, it_d) = expr_list[idx: idx + 4]

    # Match against thresh. It's of the form [X] ([X] ADD)* k EQUAL
    if isinstance(it_a, fragments.Node) and it_a.p.has_all("Bdu"):
        subs = [it_a]
        # The first matches, now do all the ([X] ADD)s and return
        # if a pair is of the form (k, EQUAL).
        for i in range(idx + 1, len(expr_list) - 1, 2):
            if (
                isinstance(expr_list[i], fragments.Node)
                and expr_list[i].p.has_all("Wdu")
                and expr_list[i + 1] == OP_ADD
            ):
                subs.append(expr_list[i])
                continue
            elif expr_list[i + 1] == OP_EQUAL and len(subs) > 1:
                k = try_int(expr_list[i])
                if k is not None and len(subs) >= k >= 1:
                    node = fragments.Thresh(k, subs)
                    expr_list[idx: i + 1 + 1] = [node]
                    return expr_list
            break

    # Match against or_c.
    if (
        isinstance(it_a, fragments.Node)
        and it_a.p.has_all("Bdu")
        and it_b == OP_NOTIF
        and isinstance(it_c, fragments.Node)
        and it_c.p.V
        and it_d == OP_ENDIF
    ):
        node = fragments.OrC(it_a, it_c)
        expr_list[idx: idx + 4] = [node]
        return expr_list

    # Match against d wrapper.
    if (
        [it_a, it_b] == [OP_DUP, OP_IF]
        and isinstance(it_c, fragments.Node)
        and it_c.p.has_all("Vz")
        and it_d == OP_ENDIF
    ):
        node = fragments.WrapD(it_c, is_taproot=ctx.is_taproot)
        expr_list[idx: idx + 4] = [node]
        return expr_list


def parse_nonterm_5_elems(expr_list, idx, ctx):
    """
    Try to parse a non-terminal node from five elements of {expr_list}, starting
    from {idx}.
    Return the new expression list on success, None if there was no match.
    """
    (it_a, it_b, it_c, it_d, it_e) = expr_list[idx: idx + 5]

    # Match against or_d.
    if (
        isinstance(it_a, fragments.Node)
        and it_a.p.has_all("Bdu")
        and [it_b, it_c] == [OP_IFDUP, OP_NOTIF]
        and isinstance(it_d, fragments.Node)
        and it_d.p.B
        and it_e == OP_ENDIF
    ):
        node = fragments.OrD(it_a, it_d)
        expr_list[idx: idx + 5] = [node]
        return expr_list

    # Match against or_i.
    if (
        it_a == OP_IF
        and isinstance(it_b, fragments.Node)
        and it_b.p.has_any("BKV")
        and it_c == OP_ELSE
        and isinstance(it_d, fragments.Node)
        and it_d.p.type() == it_b.p.type()
        and it_e == OP_ENDIF
    ):
        if isinstance(it_b, fragments.Just0):
            node = fragments.WrapL(it_d)
        elif isinstance(it_d, fragments.Just0):
            node = fragments.WrapU(it_b)
        else:
            node = fragments.OrI(it_b, it_d)
        expr_list[idx: idx + 5] = [node]
        return expr_list

    # Match against j wrapper.
    if (
        [it_a, it_b, it_c] == [OP_SIZE, OP_0NOTEQUAL, OP_IF]
        and isinstance(it_d, fragments.Node)
        and it_d.p.has_all("Bn")
        and it_e == OP_ENDIF
    ):
        node = fragments.WrapJ(it_d)
        expr_list[idx: idx + 5] = [node]
        return expr_list


def parse_nonterm_6_elems(expr_list, idx, ctx):
    """
    Try to parse a non-terminal node from six elements of {expr_list}, starting
    from {idx}.
    Return the new expression list on success, None if there was no match.
    """
    (it_a, it_b, it_c, it_d, it_e, it_f) = expr_list[idx: idx + 6]

    # Match against andor.
    if (
        isinstance(it_a, fragments.Node)
        and it_a.p.has_all("Bdu")
        and it_b == OP_NOTIF
        and isinstance(it_c, fragments.Node)
        and it_c.p.has_any("BKV")
        and it_d == OP_ELSE
        and isinstance(it_e, fragments.Node)
        and it_e.p.type() == it_c.p.type()
        and it_f == OP_ENDIF
    ):
        if isinstance(it_c, fragments.Just0):
            node = fragments.AndN(it_a, it_e)
        else:
            node = fragments.AndOr(it_a, it_e, it_c)
        expr_list[idx: idx + 6] = [node]
        return expr_list


# The non-terminal parsers along with the minimum number of elements they need.
NONTERM_PARSERS = [
    (2, parse_nonterm_2_elems),
    (3, parse_nonterm_3_elems),
    (4, parse_nonterm_4_elems),
    (5, parse_nonterm_5_elems),
    (6, parse_nonterm_6_elems),
]


def parse_expr_list(expr_list, ctx):
    """Parse a node from a list of Script elements."""
    if len(expr_list) == 0:
        raise MiniscriptMalformed("Empty Script")

    # Every pass must progress the AST construction, until it is complete (single
    # root node remains).
    while len(expr_list) > 1 or not isinstance(expr_list[0], fragments.Node):
        expr_list_len = len(expr_list)

        # Step through each list index and match against templates, right-to-left.
        for idx in range(expr_list_len - 1, -1, -1):
            if any(
                expr_list_len - idx >= min_len
                and parser(expr_list, idx, ctx) is not None
                for min_len, parser in NONTERM_PARSERS
            ):
                break
        else:
            # No match found.
            raise MiniscriptMalformed(f"{expr_list}")

    return expr_list[0]


def miniscript_from_script(script, ctx, pkh_preimages={}):
    """Construct miniscript node from script.

    :param script: The Bitcoin Script to decode.
    :param ctx: The script context, which determines the kind of keys to expect.
    :param pkh_preimage: A mapping from keyhash to key to decode pk_h() fragments.
    """
    try:
        return parse_script_elems(decompose_script(script), ctx, pkh_preimages)
    except (DescriptorKeyError, MiniscriptNodeCreationError) as e:
        raise MiniscriptMalformed(f"Invalid Script {script.hex()}: {e.message}") from e


def parse_script_elems(expr_list, ctx, pkh_preimages):
    """Parse the terminals from a list of decomposed Script elements, then the
    connectives between them."""
    expr_list_len = len(expr_list)

    # We first parse terminal expressions.
    idx = 0
    while idx < expr_list_len:
        # The multisigs first, as their threshold may otherwise be mistaken for a 1.
        if parse_term_multi(expr_list, idx, ctx) is None:
            parse_term_multi_a(expr_list, idx, ctx)
        parse_term_introspection(expr_list, idx, ctx)
        expr_list_len = len(expr_list)

        parse_term_single_elem(expr_list, idx, ctx)

        if expr_list_len - idx >= 2:
            new_expr_list = parse_term_2_elems(expr_list, idx, ctx)
            if new_expr_list is not None:
                expr_list = new_expr_list
                expr_list_len = len(expr_list)

        if expr_list_len - idx >= 5:
            new_expr_list = parse_term_5_elems(expr_list, idx, ctx, pkh_preimages)
            if new_expr_list is not None:
                expr_list = new_expr_list
                expr_list_len = len(expr_list)

        if expr_list_len - idx >= 7:
            new_expr_list = parse_term_7_elems(expr_list, idx, ctx)
            if new_expr_list is not None:
                expr_list = new_expr_list
                expr_list_len = len(expr_list)

        idx += 1

    # And then parse non-terminal ones.
    return parse_expr_list(expr_list, ctx)


def split_params(string):
    """Read a list of values before the next ')'. Split the result by comma."""
    i = string.find(")")
    if i < 0:
        raise MiniscriptMalformed(f"Missing closing parenthesis in '{string}'")

    params, remaining = string[:i], string[i:]
    if len(remaining) > 0:
        return params.split(","), remaining[1:]
    else:
        return params.split(","), ""


def parse_many(string, ctx):
    """Read a list of nodes before the next ')'."""
    subs = []
    remaining = string
    while True:
        sub, remaining = parse_one(remaining, ctx)
        subs.append(sub)
        if remaining[:1] == ")":
            return subs, remaining[1:]
        if remaining[:1] != ",":
            raise MiniscriptMalformed(f"Expected ',' or ')', got '{remaining[:1]}'")
        remaining = remaining[1:]


def parse_int(string):
    try:
        value = int(string)
    except ValueError:
        raise MiniscriptMalformed(f"Invalid integer '{string}'")
    # int() accepts '+1', '1_000' or ' 1'.
    if not string.isdigit():
        raise MiniscriptMalformed(f"Invalid integer '{string}'")
    return value


def parse_one_num(string):
    """Read an integer before the next comma."""
    i = string.find(",")
    if i < 0:
        raise MiniscriptMalformed(f"Expected a threshold in '{string}'")

    return parse_int(string[:i]), string[i + 1:]


def parse_key(key_str, ctx):
    try:
        return DescriptorKey(key_str, x_only=ctx.is_taproot)
    except DescriptorKeyError as e:
        raise MiniscriptMalformed(f"Invalid key '{key_str}': {e.message}") from e


def parse_pkh_param(param, ctx):
    # Either a key or, as in the Script representation, the hash of a key.
    if len(param) == 40:
        return param
    return parse_key(param, ctx)


def parse_wrapper(tag, sub, ctx):
    if tag == "a":
        return fragments.WrapA(sub)
    if tag == "s":
        return fragments.WrapS(sub)
    if tag == "c":
        return fragments.WrapC(sub, is_taproot=ctx.is_taproot)
    if tag == "t":
        return fragments.WrapT(sub)
    if tag == "d":
        return fragments.WrapD(sub, is_taproot=ctx.is_taproot)
    if tag == "v":
        return fragments.WrapV(sub)
    if tag == "j":
        return fragments.WrapJ(sub)
    if tag == "n":
        return fragments.WrapN(sub)
    if tag == "l":
        return fragments.WrapL(sub)
    if tag == "u":
        return fragments.WrapU(sub)
    raise MiniscriptMalformed(f"Unknown wrapper '{tag}'")


def parse_terminal(tag, params, ctx):
    is_tap = ctx.is_taproot

    if tag not in ["multi", "multi_a"] and len(params) != 1:
        raise MiniscriptMalformed(f"{tag}() takes 1 argument, got {len(params)}")

    if tag == "pk":
        return fragments.WrapC(fragments.Pk(parse_key(params[0], ctx), is_tap), is_tap)

    if tag == "pk_k":
        return fragments.Pk(parse_key(params[0], ctx), is_tap)

    if tag == "pkh":
        pkh = fragments.Pkh(parse_pkh_param(params[0], ctx), is_tap)
        return fragments.WrapC(pkh, is_tap)

    if tag == "pk_h":
        return fragments.Pkh(parse_pkh_param(params[0], ctx), is_tap)

    if tag == "ver_eq":
        return fragments.VerEq(parse_int(params[0]))

    if tag == "outputs_pref":
        try:
            prefix = bytes.fromhex(params[0])
        except ValueError:
            raise MiniscriptMalformed(f"Invalid outputs prefix '{params[0]}'")
        return fragments.OutputsPref(prefix)

    if tag == "older":
        return fragments.Older(parse_int(params[0]))

    if tag == "after":
        return fragments.After(parse_int(params[0]))

    if tag in ["sha256", "hash256", "ripemd160", "hash160"]:
        try:
            digest = bytes.fromhex(params[0])
        except ValueError:
            raise MiniscriptMalformed(f"Invalid digest '{params[0]}'")
        if tag == "sha256":
            return fragments.Sha256(digest)
        if tag == "hash256":
            return fragments.Hash256(digest)
        if tag == "ripemd160":
            return fragments.Ripemd160(digest)
        return fragments.Hash160(digest)

    if tag in ["multi", "multi_a"]:
        if len(params) < 2:
            raise MiniscriptMalformed(f"{tag}() needs a threshold and keys")
        k = parse_int(params[0])
        keys = [parse_key(param, ctx) for param in params[1:]]
        if tag == "multi":
            return fragments.Multi(k, keys)
        return fragments.MultiA(k, keys)


TERMINAL_TAGS = [
    "pk",
    "pkh",
    "pk_k",
    "pk_h",
    "sha256",
    "hash256",
    "ripemd160",
    "hash160",
    "older",
    "after",
    "multi",
    "multi_a",
    "ver_eq",
    "outputs_pref",
]


def parse_one(string, ctx):
    """Read a node and its subs recursively from a string.
    Returns the node and the part of the string not consumed.
    """
    if len(string) == 0:
        raise MiniscriptMalformed("Unexpected end of Miniscript")

    # We special case fragments.Just1 and fragments.Just0 since they are the only one which don't
    # have a function syntax.
    if string[0] == "0":
        return fragments.Just0(), string[1:]
    if string[0] == "1":
        return fragments.Just1(), string[1:]

    # Now, find the separator for all functions.
    for i, char in enumerate(string):
        if char in ["(", ":"]:
            break
    else:
        raise MiniscriptMalformed(f"Expected a fragment, got '{string}'")
    # For wrappers, we may have many of them.
    if char == ":" and i > 1:
        tag, remaining = string[0], string[1:]
    else:
        tag, remaining = string[:i], string[i + 1:]

    # Wrappers
    if char == ":":
        sub, remaining = parse_one(remaining, ctx)
        return parse_wrapper(tag, sub, ctx), remaining

    # Terminal elements other than 0 and 1
    if tag in TERMINAL_TAGS:
        params, remaining = split_params(remaining)
        return parse_terminal(tag, params, ctx), remaining

    # Non-terminal elements (connectives)
    # We special case fragments.Thresh, as its first sub is an integer.
    if tag == "thresh":
        k, remaining = parse_one_num(remaining)
    subs, remaining = parse_many(remaining, ctx)

    connectives = {
        "and_v": (fragments.AndV, 2),
        "and_b": (fragments.AndB, 2),
        "and_n": (fragments.AndN, 2),
        "or_b": (fragments.OrB, 2),
        "or_c": (fragments.OrC, 2),
        "or_d": (fragments.OrD, 2),
        "or_i": (fragments.OrI, 2),
        "andor": (fragments.AndOr, 3),
    }
    if tag in connectives:
        frag, n_subs = connectives[tag]
        if len(subs) != n_subs:
            raise MiniscriptMalformed(
                f"{tag}() takes {n_subs} arguments, got {len(subs)}"
            )
        return frag(*subs), remaining

    if tag == "thresh":
        return fragments.Thresh(k, subs), remaining

    raise MiniscriptMalformed(f"Unknown fragment '{tag}'")


def miniscript_from_str(ms_str, ctx):
    """Construct miniscript node from string representation"""
    try:
        node, remaining = parse_one(ms_str, ctx)
    except MiniscriptNodeCreationError as e:
        raise MiniscriptMalformed(f"Invalid Miniscript '{ms_str}': {e.message}") from e
    if remaining != "":
        raise MiniscriptMalformed(f"Unexpected trailing characters '{remaining}'")
    return node
