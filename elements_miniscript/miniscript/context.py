"""
Script contexts.

A Miniscript is always used under a given script context: the set of consensus and
standardness rules of the Script it is encoded in (a legacy P2SH redeem Script, a P2WSH
witness Script, the witness Script of a covenant, a Tapscript, a bare output Script). Each context is a record of limits
along with the checks to apply to a Miniscript before it can be used in this context.

The contexts are used as is (as classes), for instance ``Node.from_str(s, ctx=Segwitv0)``.
"""

from .errors import (
    MiniscriptAnalysisError,
    MiniscriptContextError,
    ScriptSizeTooLarge,
    TooManyOps,
)

# Maximum size of a Script, consensus.
MAX_SCRIPT_SIZE = 10000
# Maximum size of a P2WSH witness Script, policy.
MAX_STANDARD_P2WSH_SCRIPT_SIZE = 3600
# Maximum number of non-push operations per Script, consensus.
MAX_OPS_PER_SCRIPT = 201
# Maximum size of a stack element, consensus. This bounds the P2SH redeem Script.
MAX_SCRIPT_ELEMENT_SIZE = 520
# Maximum number of witness stack items in a P2WSH spend, policy.
MAX_STANDARD_P2WSH_STACK_ITEMS = 100
# Maximum size of a scriptSig, policy.
MAX_SCRIPTSIG_SIZE = 1650
# Maximum number of public keys in a multi() fragment, consensus.
MAX_PUBKEYS_PER_MULTISIG = 20
# Maximum number of public keys in a multi_a() fragment, consensus (stack size limit).
MAX_PUBKEYS_PER_MULTI_A = 999


class ScriptContext:
    """The interface of a script context. Not to be used directly."""

    name = None
    is_taproot = False
    # Consensus limits, None when not applicable.
    max_script_size = None
    max_ops = None
    # Whether 'multi()' and 'multi_a()' may be used.
    allows_multi = True
    allows_multi_a = False
    # Whether the fragments inspecting the spending transaction may be used.
    allows_introspection = False

    @classmethod
    def check_key(cls, key):
        """Raise if the encoding of this key (a DescriptorKey) is not allowed here."""
        raise NotImplementedError

    @classmethod
    def check_fragment(cls, node):
        """Raise if this (single) fragment may not be used under this context."""
        # Avoid a circular import, fragments are parameterized by contexts.
        from .fragments import IntrospectionNode, Multi, MultiA

        if isinstance(node, Multi) and not cls.allows_multi:
            raise MiniscriptContextError(f"multi() is not allowed under {cls.name}")
        if isinstance(node, MultiA) and not cls.allows_multi_a:
            raise MiniscriptContextError(f"multi_a() is not allowed under {cls.name}")
        if isinstance(node, IntrospectionNode) and not cls.allows_introspection:
            raise MiniscriptContextError(
                f"{node} may only be used in a covenant, not under {cls.name}"
            )

    @classmethod
    def check_local_consensus_validity(cls, ms):
        """Check the keys and fragments of every node of this Miniscript."""
        for node in ms.nodes():
            cls.check_fragment(node)
            for key in node.own_keys():
                cls.check_key(key)

    @classmethod
    def check_global_consensus_validity(cls, ms):
        """Check the resource limits of the Script this Miniscript compiles to."""
        cls.check_local_consensus_validity(ms)
        if cls.max_script_size is not None and ms.script_size > cls.max_script_size:
            raise ScriptSizeTooLarge(
                f"Script size {ms.script_size} exceeds the maximum of "
                f"{cls.max_script_size} under {cls.name}"
            )
        if cls.max_ops is not None and ms.exec_info.ops_count > cls.max_ops:
            raise TooManyOps(
                f"Script may execute {ms.exec_info.ops_count} operations, above "
                f"the maximum of {cls.max_ops}"
            )

    @classmethod
    def check_global_policy_validity(cls, ms):
        """Check standardness limits. Context-specific, none by default."""
        pass

    @classmethod
    def top_level_checks(cls, ms):
        """Checks for a Miniscript used as the top-level Script of an output."""
        if not ms.p.B:
            raise MiniscriptContextError(
                f"Top-level Miniscript must be of type B, got '{ms.p.type()}': {ms}"
            )
        cls.check_global_consensus_validity(ms)

    @classmethod
    def check_global_validity(cls, ms):
        """Check both the consensus and standardness rules."""
        cls.check_global_consensus_validity(ms)
        try:
            cls.check_global_policy_validity(ms)
        except MiniscriptContextError as e:
            raise MiniscriptAnalysisError(
                f"Branch exceeds resource limits: {e.message}"
            ) from e


class Legacy(ScriptContext):
    """P2SH redeem Script context."""

    name = "Legacy"
    max_script_size = MAX_SCRIPT_ELEMENT_SIZE
    max_ops = MAX_OPS_PER_SCRIPT

    @classmethod
    def check_key(cls, key):
        if key.x_only:
            raise MiniscriptContextError(
                f"x-only key '{key}' is not allowed under {cls.name}"
            )

    @classmethod
    def check_global_policy_validity(cls, ms):
        if ms.exec_info.sat_size is not None and ms.exec_info.sat_size > MAX_SCRIPTSIG_SIZE:
            raise MiniscriptContextError(
                f"Satisfaction of size {ms.exec_info.sat_size} exceeds the maximum "
                f"scriptSig size of {MAX_SCRIPTSIG_SIZE}"
            )


class Segwitv0(ScriptContext):
    """P2WSH witness Script context."""

    name = "Segwitv0"
    max_script_size = MAX_SCRIPT_SIZE
    max_ops = MAX_OPS_PER_SCRIPT

    @classmethod
    def check_key(cls, key):
        if key.is_uncompressed():
            raise MiniscriptContextError(
                f"uncompressed key '{key}' is not allowed under {cls.name}"
            )
        if key.x_only:
            raise MiniscriptContextError(
                f"x-only key '{key}' is not allowed under {cls.name}"
            )

    @classmethod
    def check_global_policy_validity(cls, ms):
        if ms.script_size > MAX_STANDARD_P2WSH_SCRIPT_SIZE:
            raise ScriptSizeTooLarge(
                f"Script size {ms.script_size} exceeds the standard maximum of "
                f"{MAX_STANDARD_P2WSH_SCRIPT_SIZE}"
            )
        sat_elems = ms.exec_info.sat_elems
        if sat_elems is not None and sat_elems > MAX_STANDARD_P2WSH_STACK_ITEMS:
            raise MiniscriptContextError(
                f"Satisfaction needs {sat_elems} witness elements, above the "
                f"standard maximum of {MAX_STANDARD_P2WSH_STACK_ITEMS}"
            )


class Covenant(Segwitv0):
    """Witness Script context of a covenant. The signature hash components are at the
    bottom of the stack, so the Miniscript may inspect the spending transaction."""

    name = "Covenant"
    allows_introspection = True


class Tap(ScriptContext):
    """Tapscript context."""

    name = "Tap"
    is_taproot = True
    allows_multi = False
    allows_multi_a = True

    @classmethod
    def check_key(cls, key):
        if not key.x_only or key.is_uncompressed():
            raise MiniscriptContextError(
                f"Only x-only keys are allowed under {cls.name}, got '{key}'"
            )


class Bare(ScriptContext):
    """Bare output Script context."""

    name = "Bare"
    max_script_size = MAX_SCRIPT_SIZE
    max_ops = MAX_OPS_PER_SCRIPT

    @classmethod
    def check_key(cls, key):
        if key.x_only:
            raise MiniscriptContextError(
                f"x-only key '{key}' is not allowed under {cls.name}"
            )

    @classmethod
    def check_global_policy_validity(cls, ms):
        Legacy.check_global_policy_validity(ms)


class NoChecks(ScriptContext):
    """A context without any check, to represent Miniscripts already validated
    under their own context. Used by the interpreter."""

    name = "NoChecks"
    allows_multi_a = True

    @classmethod
    def check_key(cls, key):
        pass

    @classmethod
    def check_fragment(cls, node):
        pass
