"""Output Script Descriptors checksum.

See https://github.com/bitcoin/bips/blob/master/bip-0380.mediawiki#checksum.
"""

from .errors import ChecksumError

INPUT_CHARSET = "0123456789()[],'/*abcdefgh@:$%{}IJKLMNOPQRSTUVWXYZ&+-.;<=>?!^_|~ijklmnopqrstuvwxyzABCDEFGH`#\"\\ "
INPUT_CHARSET_INV = {c: i for (i, c) in enumerate(INPUT_CHARSET)}
CHECKSUM_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
CHECKSUM_LEN = 8
GENERATOR = [0xF5DEE51989, 0xA9FDCA3312, 0x1BAB10E32D, 0x3706B1677A, 0x644D626FFD]


def polymod(c, val):
    """Compute modulo over the BCH code generator of descriptor checksums."""
    c0 = c >> 35
    c = ((c & 0x7FFFFFFFF) << 5) ^ val
    for i in range(5):
        if (c0 >> i) & 1:
            c ^= GENERATOR[i]
    return c


def desc_checksum(desc_str):
    """Compute the checksum of a descriptor string (without its '#')."""
    c = 1
    cls = 0
    clscount = 0
    for ch in desc_str:
        pos = INPUT_CHARSET_INV.get(ch)
        if pos is None:
            raise ChecksumError(f"Invalid character '{ch}' in descriptor")
        c = polymod(c, pos & 31)
        cls = cls * 3 + (pos >> 5)
        clscount += 1
        if clscount == 3:
            c = polymod(c, cls)
            cls = 0
            clscount = 0
    if clscount > 0:
        c = polymod(c, cls)
    for _ in range(CHECKSUM_LEN):
        c = polymod(c, 0)
    c ^= 1

    return "".join(
        CHECKSUM_CHARSET[(c >> (5 * (CHECKSUM_LEN - 1 - j))) & 31]
        for j in range(CHECKSUM_LEN)
    )


def descsum_create(desc_str):
    """Append the checksum to this descriptor string."""
    return f"{desc_str}#{desc_checksum(desc_str)}"


def descsum_check(desc_str):
    """Whether the checksum appended to this descriptor string is valid."""
    if len(desc_str) < CHECKSUM_LEN + 1 or desc_str[-CHECKSUM_LEN - 1] != "#":
        return False
    try:
        return desc_checksum(desc_str[: -CHECKSUM_LEN - 1]) == desc_str[-CHECKSUM_LEN:]
    except ChecksumError:
        return False


def verify_checksum(desc_str, strict=True):
    """Check the checksum of a descriptor string and return the descriptor without it.

    :param strict: whether to require the presence of a checksum. If not, a descriptor
                   without checksum is only checked for invalid characters.
    """
    parts = desc_str.split("#")
    if len(parts) == 1:
        if strict:
            raise ChecksumError("Missing checksum")
        # Still make sure the descriptor doesn't contain invalid characters.
        desc_checksum(desc_str)
        return desc_str
    if len(parts) > 2:
        raise ChecksumError(f"Multiple '#' in descriptor '{desc_str}'")

    descriptor, checksum = parts
    if len(checksum) != CHECKSUM_LEN:
        raise ChecksumError(
            f"Checksum '{checksum}' has length {len(checksum)}, expected {CHECKSUM_LEN}"
        )
    if desc_checksum(descriptor) != checksum:
        raise ChecksumError(f"Checksum '{checksum}' is invalid for '{descriptor}'")
    return descriptor
