class DescriptorParsingError(ValueError):
    """Error while parsing a Bitcoin Output Descriptor from its string representation"""

    def __init__(self, message: str):
        self.message: str = message


class ChecksumError(DescriptorParsingError):
    """The descriptor checksum is missing, malformed or does not match."""

    pass


class DescriptorError(ValueError):
    """The descriptor can't be created or used this way."""

    def __init__(self, message: str):
        self.message: str = message


class BareDescriptorAddr(DescriptorError):
    def __init__(self):
        DescriptorError.__init__(self, "Bare descriptors don't have an address")


class MissingSignature(DescriptorError):
    def __init__(self, pubkey):
        self.pubkey = pubkey
        DescriptorError.__init__(self, f"Missing signature for key '{pubkey}'")


class ImpossibleSatisfaction(DescriptorError):
    pass


class ScriptSizeTooLarge(DescriptorError):
    pass


class CovenantError(DescriptorError):
    pass


class BadCovDescriptor(CovenantError):
    def __init__(self, message="Script is not a covenant descriptor"):
        CovenantError.__init__(self, message)


class MissingCovSignature(CovenantError):
    def __init__(self):
        CovenantError.__init__(self, "Missing signature for the covenant key")


class MissingSighashItem(CovenantError):
    def __init__(self, index):
        # The position of the missing item in the signature hash, starting from 1.
        self.index = index
        CovenantError.__init__(self, f"Missing sighash item #{index}")


class CovenantSighashTypeMismatch(CovenantError):
    def __init__(self):
        CovenantError.__init__(
            self, "Covenant signature hash type does not match the sighash type item"
        )
