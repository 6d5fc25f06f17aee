"""
All the exceptions raised when dealing with Miniscript.
"""


class MiniscriptMalformed(ValueError):
    """The string or Script representation could not be decoded."""

    def __init__(self, message: str):
        self.message: str = message


class MiniscriptNodeCreationError(ValueError):
    def __init__(self, message: str):
        self.message: str = message


class MiniscriptPropertyError(ValueError):
    def __init__(self, message: str):
        self.message: str = message


class MiniscriptContextError(ValueError):
    """The Miniscript is not valid under the script context it is used in."""

    def __init__(self, message: str):
        self.message: str = message


class ScriptSizeTooLarge(MiniscriptContextError):
    pass


class TooManyOps(MiniscriptContextError):
    pass


class MiniscriptAnalysisError(ValueError):
    """The Miniscript is valid but does not pass the sanity checks."""

    def __init__(self, message: str):
        self.message: str = message
