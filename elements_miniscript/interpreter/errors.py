class InterpreterError(ValueError):
    """The spending data (scriptSig and witness) can't be interpreted against the
    output's scriptPubKey."""

    def __init__(self, message: str):
        self.message: str = message


class NonEmptyWitness(InterpreterError):
    def __init__(self):
        InterpreterError.__init__(self, "Non-empty witness for a legacy spend")


class NonEmptyScriptSig(InterpreterError):
    def __init__(self):
        InterpreterError.__init__(self, "Non-empty scriptSig for a Segwit spend")


class UnexpectedStackEnd(InterpreterError):
    def __init__(self):
        InterpreterError.__init__(self, "Unexpected end of stack")


class ExpectedPush(InterpreterError):
    def __init__(self):
        InterpreterError.__init__(self, "Expected push in script")


class IncorrectPubkeyHash(InterpreterError):
    def __init__(self):
        InterpreterError.__init__(self, "Public key does not match the P2PKH hash")


class IncorrectWPubkeyHash(InterpreterError):
    def __init__(self):
        InterpreterError.__init__(self, "Public key does not match the P2WPKH hash")


class IncorrectScriptHash(InterpreterError):
    def __init__(self):
        InterpreterError.__init__(self, "Redeem Script does not match the P2SH hash")


class IncorrectWScriptHash(InterpreterError):
    def __init__(self):
        InterpreterError.__init__(self, "Witness Script does not match the P2WSH hash")


class UncompressedPubkey(InterpreterError):
    def __init__(self):
        InterpreterError.__init__(self, "Uncompressed public key in a Segwit spend")


class PubkeyParseError(InterpreterError):
    pass


class XOnlyPublicKeyParseError(InterpreterError):
    pass


class TapAnnexUnsupported(InterpreterError):
    def __init__(self):
        InterpreterError.__init__(self, "Taproot annexes are not supported")


class ControlBlockParse(InterpreterError):
    pass


class ControlBlockVerificationError(InterpreterError):
    def __init__(self):
        InterpreterError.__init__(
            self, "Control block does not commit to the Taproot output key"
        )


class ScriptParseError(InterpreterError):
    """A Script of the spending data is not a valid Miniscript."""

    pass
