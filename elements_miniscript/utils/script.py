# Copyright (c) 2015-2020 The Bitcoin Core developers
# Copyright (c) 2021 Antoine Poinsot
# Distributed under the MIT software license, see the accompanying
# file LICENSE or http://www.opensource.org/licenses/mit-license.php.
"""Script utilities

Adapted from the Bitcoin Core test framework, itself previously modified from
python-bitcoinlib. Extended with the opcodes re-enabled or introduced by Elements.
"""


OPCODE_NAMES = {}


class CScriptOp(int):
    """A single script opcode"""

    __slots__ = ()

    @staticmethod
    def encode_op_pushdata(d):
        """Encode the push of the data {d} using the smallest PUSHDATA opcode."""
        if len(d) < OP_PUSHDATA1:
            return bytes([len(d)]) + d
        for opcode, size_len in [(OP_PUSHDATA1, 1), (OP_PUSHDATA2, 2), (OP_PUSHDATA4, 4)]:
            if len(d) < 2 ** (8 * size_len):
                return bytes([opcode]) + len(d).to_bytes(size_len, "little") + d
        raise ValueError("Data too long to encode in a PUSHDATA op")

    @staticmethod
    def encode_op_n(n):
        """Encode a small integer op, returning an opcode"""
        if not (0 <= n <= 16):
            raise ValueError(f"Integer must be in range 0 <= n <= 16, got {n}")
        if n == 0:
            return OP_0
        return CScriptOp(OP_1 + n - 1)

    def decode_op_n(self):
        """Decode a small integer opcode, returning an integer"""
        if self == OP_0:
            return 0
        if not OP_1 <= self <= OP_16:
            raise ValueError(f"op {self!r} is not an OP_N")
        return int(self - OP_1 + 1)

    def is_small_int(self):
        """Return true if the op pushes a small integer to the stack"""
        return OP_1 <= self <= OP_16 or self == OP_0

    def __str__(self):
        return repr(self)

    def __repr__(self):
        return OPCODE_NAMES.get(self, f"CScriptOp({hex(self)})")


# push value
OP_0 = CScriptOp(0x00)
OP_PUSHDATA1 = CScriptOp(0x4C)
OP_PUSHDATA2 = CScriptOp(0x4D)
OP_PUSHDATA4 = CScriptOp(0x4E)
OP_1NEGATE = CScriptOp(0x4F)
OP_1 = CScriptOp(0x51)
OP_16 = CScriptOp(0x60)

# control
OP_IF = CScriptOp(0x63)
OP_NOTIF = CScriptOp(0x64)
OP_ELSE = CScriptOp(0x67)
OP_ENDIF = CScriptOp(0x68)
OP_VERIFY = CScriptOp(0x69)

# stack ops
OP_TOALTSTACK = CScriptOp(0x6B)
OP_FROMALTSTACK = CScriptOp(0x6C)
OP_IFDUP = CScriptOp(0x73)
OP_DEPTH = CScriptOp(0x74)
OP_DUP = CScriptOp(0x76)
OP_OVER = CScriptOp(0x78)
OP_PICK = CScriptOp(0x79)
OP_SWAP = CScriptOp(0x7C)

# splice ops, re-enabled in Elements
OP_CAT = CScriptOp(0x7E)
OP_LEFT = CScriptOp(0x80)
OP_SIZE = CScriptOp(0x82)

# bit logic
OP_EQUAL = CScriptOp(0x87)
OP_EQUALVERIFY = CScriptOp(0x88)

# numeric
OP_0NOTEQUAL = CScriptOp(0x92)

OP_ADD = CScriptOp(0x93)
OP_SUB = CScriptOp(0x94)

OP_BOOLAND = CScriptOp(0x9A)
OP_BOOLOR = CScriptOp(0x9B)
OP_NUMEQUAL = CScriptOp(0x9C)
OP_NUMEQUALVERIFY = CScriptOp(0x9D)

# crypto
OP_RIPEMD160 = CScriptOp(0xA6)
OP_SHA256 = CScriptOp(0xA8)
OP_HASH160 = CScriptOp(0xA9)
OP_HASH256 = CScriptOp(0xAA)
OP_CODESEPARATOR = CScriptOp(0xAB)
OP_CHECKSIG = CScriptOp(0xAC)
OP_CHECKSIGVERIFY = CScriptOp(0xAD)
OP_CHECKMULTISIG = CScriptOp(0xAE)
OP_CHECKMULTISIGVERIFY = CScriptOp(0xAF)

# expansion
OP_CHECKLOCKTIMEVERIFY = CScriptOp(0xB1)
OP_CHECKSEQUENCEVERIFY = CScriptOp(0xB2)

# tapscript
OP_CHECKSIGADD = CScriptOp(0xBA)

# Elements signature over arbitrary messages
OP_CHECKSIGFROMSTACK = CScriptOp(0xC1)

OPCODE_NAMES.update(
    {
        OP_0: "OP_0",
        OP_PUSHDATA1: "OP_PUSHDATA1",
        OP_PUSHDATA2: "OP_PUSHDATA2",
        OP_PUSHDATA4: "OP_PUSHDATA4",
        OP_1NEGATE: "OP_1NEGATE",
        OP_IF: "OP_IF",
        OP_NOTIF: "OP_NOTIF",
        OP_ELSE: "OP_ELSE",
        OP_ENDIF: "OP_ENDIF",
        OP_VERIFY: "OP_VERIFY",
        OP_TOALTSTACK: "OP_TOALTSTACK",
        OP_FROMALTSTACK: "OP_FROMALTSTACK",
        OP_IFDUP: "OP_IFDUP",
        OP_DEPTH: "OP_DEPTH",
        OP_DUP: "OP_DUP",
        OP_OVER: "OP_OVER",
        OP_PICK: "OP_PICK",
        OP_SWAP: "OP_SWAP",
        OP_CAT: "OP_CAT",
        OP_LEFT: "OP_LEFT",
        OP_SIZE: "OP_SIZE",
        OP_EQUAL: "OP_EQUAL",
        OP_EQUALVERIFY: "OP_EQUALVERIFY",
        OP_0NOTEQUAL: "OP_0NOTEQUAL",
        OP_ADD: "OP_ADD",
        OP_SUB: "OP_SUB",
        OP_BOOLAND: "OP_BOOLAND",
        OP_BOOLOR: "OP_BOOLOR",
        OP_NUMEQUAL: "OP_NUMEQUAL",
        OP_NUMEQUALVERIFY: "OP_NUMEQUALVERIFY",
        OP_RIPEMD160: "OP_RIPEMD160",
        OP_SHA256: "OP_SHA256",
        OP_HASH160: "OP_HASH160",
        OP_HASH256: "OP_HASH256",
        OP_CODESEPARATOR: "OP_CODESEPARATOR",
        OP_CHECKSIG: "OP_CHECKSIG",
        OP_CHECKSIGVERIFY: "OP_CHECKSIGVERIFY",
        OP_CHECKMULTISIG: "OP_CHECKMULTISIG",
        OP_CHECKMULTISIGVERIFY: "OP_CHECKMULTISIGVERIFY",
        OP_CHECKLOCKTIMEVERIFY: "OP_CHECKLOCKTIMEVERIFY",
        OP_CHECKSEQUENCEVERIFY: "OP_CHECKSEQUENCEVERIFY",
        OP_CHECKSIGADD: "OP_CHECKSIGADD",
        OP_CHECKSIGFROMSTACK: "OP_CHECKSIGFROMSTACK",
    }
)
OPCODE_NAMES.update({CScriptOp(OP_1 + n - 1): f"OP_{n}" for n in range(1, 17)})


class ScriptNumError(ValueError):
    def __init__(self, message):
        self.message = message


def read_script_number(data):
    """Read a Script number from {data} bytes"""
    size = len(data)
    if size > 4:
        raise ScriptNumError("Too large push")

    if size == 0:
        return 0

    # We always check for minimal encoding
    if (data[size - 1] & 0x7F) == 0:
        if size == 1 or (data[size - 2] & 0x80) == 0:
            raise ScriptNumError("Non minimal encoding")

    res = int.from_bytes(data, byteorder="little")

    # Remove the sign bit if set, and negate the result
    if data[size - 1] & 0x80:
        return -(res & ~(0x80 << (size - 1)))
    return res


def script_number(value):
    """Minimally encode {value} as a Script number (without the push opcode)."""
    if value == 0:
        return b""
    neg = value < 0
    absvalue = -value if neg else value
    r = bytearray()
    while absvalue:
        r.append(absvalue & 0xFF)
        absvalue >>= 8
    if r[-1] & 0x80:
        r.append(0x80 if neg else 0)
    elif neg:
        r[-1] |= 0x80
    return bytes(r)


class CScriptInvalidError(Exception):
    """The Script contains a truncated push, or isn't made of the expected pushes."""

    pass


class CScript(bytes):
    """A serialized Script.

    As a bytes subclass it can be used wherever bytes are, but indexing it gives bytes
    and not opcodes. Iterating over it gives opcodes and pushed data.
    """

    __slots__ = ()

    @classmethod
    def __coerce_instance(cls, other):
        # Serialize a Script element: an opcode, a number or data to be pushed.
        if isinstance(other, CScriptOp):
            other = bytes([other])
        elif isinstance(other, int):
            if 0 <= other <= 16:
                other = bytes([CScriptOp.encode_op_n(other)])
            elif other == -1:
                other = bytes([OP_1NEGATE])
            else:
                other = CScriptOp.encode_op_pushdata(script_number(other))
        elif isinstance(other, (bytes, bytearray)):
            other = CScriptOp.encode_op_pushdata(other)
        return other

    def __add__(self, other):
        """Append an element to this Script."""
        return CScript(bytes(self) + self.__coerce_instance(other))

    def __new__(cls, value=b""):
        if isinstance(value, (bytes, bytearray)):
            return super(CScript, cls).__new__(cls, value)
        return super(CScript, cls).__new__(
            cls, b"".join(cls.__coerce_instance(elem) for elem in value)
        )

    def raw_iter(self):
        """Iterate over the (opcode, pushed data, position) of each operation.

        The data is None for operations which aren't a push.
        """
        i = 0
        while i < len(self):
            sop_idx = i
            opcode = self[i]
            i += 1

            if opcode > OP_PUSHDATA4:
                yield (opcode, None, sop_idx)
                continue

            if opcode < OP_PUSHDATA1:
                size_len = 0
                datasize = opcode
            else:
                # The size of the data follows the opcode as a 1, 2 or 4 bytes integer.
                size_len = {OP_PUSHDATA1: 1, OP_PUSHDATA2: 2, OP_PUSHDATA4: 4}[opcode]
                if i + size_len > len(self):
                    raise CScriptInvalidError(
                        f"{CScriptOp(opcode)!r}: missing data length"
                    )
                datasize = int.from_bytes(self[i : i + size_len], "little")
            i += size_len

            data = bytes(self[i : i + datasize])
            if len(data) < datasize:
                raise CScriptInvalidError(f"Push of {datasize} bytes: truncated data")
            i += datasize

            yield (opcode, data, sop_idx)

    def __iter__(self):
        """Iterate over the elements of this Script: opcodes as CScriptOp, small
        integers as int and pushes as bytes."""
        for (opcode, data, _) in self.raw_iter():
            if data is not None:
                yield data
                continue
            opcode = CScriptOp(opcode)
            if opcode.is_small_int():
                yield opcode.decode_op_n()
            else:
                yield opcode

    def minimal_pushes(self):
        """Iterate over the pushes of this Script, enforcing they are minimally encoded.

        Yields the pushed bytes (empty for OP_0), or the integer for OP_1NEGATE and
        OP_1..OP_16. Raises a CScriptInvalidError on a non-push opcode or a non-minimal
        push.
        """
        for (opcode, data, _) in self.raw_iter():
            if data is None:
                op = CScriptOp(opcode)
                if not op.is_small_int() and op != OP_1NEGATE:
                    raise CScriptInvalidError(f"Expected push, got {op!r}")
                yield -1 if op == OP_1NEGATE else op.decode_op_n()
                continue
            # A single byte in [1, 16] or 0x81 must use the OP_N opcode, and the
            # empty vector must be pushed with OP_0.
            if len(data) == 0 and opcode != OP_0:
                raise CScriptInvalidError("Non-minimal push of empty data")
            if len(data) == 1 and (1 <= data[0] <= 16 or data[0] == 0x81):
                raise CScriptInvalidError("Non-minimal push of a small number")
            if opcode != CScriptOp.encode_op_pushdata(data)[0]:
                raise CScriptInvalidError("Non-minimal PUSHDATA encoding")
            yield data
