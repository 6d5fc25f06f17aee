"""
Common Bitcoin and Elements hashes.
"""

import hashlib

# Not all OpenSSL builds provide RIPEMD160 anymore, embit falls back to a pure
# Python implementation.
from embit.hashes import ripemd160


def sha256(data: bytes) -> bytes:
    """{data} must be bytes, returns sha256(data)"""
    assert isinstance(data, bytes)
    return hashlib.sha256(data).digest()


def hash160(data: bytes) -> bytes:
    """{data} must be bytes, returns ripemd160(sha256(data))"""
    assert isinstance(data, bytes)
    return ripemd160(sha256(data))


def hash256(data: bytes) -> bytes:
    """{data} must be bytes, returns sha256(sha256(data))"""
    assert isinstance(data, bytes)
    return sha256(sha256(data))


def tagged_hash(tag: str, data: bytes) -> bytes:
    """BIP340 tagged hash: sha256(sha256(tag) || sha256(tag) || data)."""
    tag_hash = sha256(tag.encode("utf-8"))
    return sha256(tag_hash + tag_hash + data)
