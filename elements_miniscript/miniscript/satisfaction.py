"""
Miniscript satisfaction.

This module contains logic for "signing for" a Miniscript (constructing a valid witness
that meets the conditions set by the Script) and analysis of such satisfaction(s) (eg the
maximum cost in a given resource).
This is focused on non-malleable satisfaction. We take shortcuts to not care about
non-canonical (dis)satisfactions. A malleable mode is available which simply picks the
smallest available witness.
"""

from ..utils.hashes import hash160


def add_optional(a, b):
    """Add two numbers that may be None together."""
    if a is None or b is None:
        return None
    return a + b


def max_optional(a, b):
    """Return the maximum of two numbers that may be None."""
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


class SatisfactionMaterial:
    """Data that may be needed in order to satisfy a Miniscript fragment or a descriptor.

    This is the satisfier capability: all lookups return None when the data is not
    available.
    """

    def __init__(
        self,
        preimages=None,
        signatures=None,
        max_sequence=2 ** 32,
        max_lock_time=2 ** 32,
        malleable=False,
        **sighash_items,
    ):
        """
        :param preimages: Mapping from a hash (as bytes), to its 32-bytes preimage.
        :param signatures: Mapping from a public key (as bytes), to a signature for this
                           key. ECDSA signatures are DER-encoded with the sighash type
                           byte appended.
        :param max_sequence: The maximum relative timelock possible (coin age).
        :param max_lock_time: The maximum absolute timelock possible (block height).
        :param malleable: Whether to allow malleable satisfactions.
        :param sighash_items: The serialized sighash components needed to satisfy a
                              covenant. See SIGHASH_ITEMS.
        """
        self.preimages = preimages if preimages is not None else {}
        self.signatures = signatures if signatures is not None else {}
        self.max_sequence = max_sequence
        self.max_lock_time = max_lock_time
        self.malleable = malleable

        for item in sighash_items:
            if item not in self.SIGHASH_ITEMS:
                raise TypeError(f"Unknown sighash item '{item}'")
        for item in self.SIGHASH_ITEMS:
            setattr(self, item, sighash_items.get(item))

    # The transaction data committed to by a covenant, in signature hash order.
    # - n_version: int, the transaction version
    # - hash_prevouts, hash_sequence, hash_issuances: 32 bytes each
    # - outpoint: 36 bytes (txid + vout)
    # - script_code: bytes, the script code of the spent output
    # - value: bytes, the serialized (possibly confidential) value of the spent output
    # - n_sequence: int, the sequence of the input
    # - outputs: list of bytes, the serialized transaction outputs
    # - n_locktime: int, the transaction lock time
    # - sighash_type: int, the signature hash type
    SIGHASH_ITEMS = [
        "n_version",
        "hash_prevouts",
        "hash_sequence",
        "hash_issuances",
        "outpoint",
        "script_code",
        "value",
        "n_sequence",
        "outputs",
        "n_locktime",
        "sighash_type",
    ]

    def lookup_ecdsa_sig(self, pubkey):
        """Get the signature for this public key (as bytes), if any."""
        return self.signatures.get(pubkey)

    def lookup_preimage(self, digest):
        return self.preimages.get(digest)

    def lookup_pkh(self, key_hash):
        """Get a (public key, signature) pair for a key whose hash160 is {key_hash}."""
        for pubkey, sig in self.signatures.items():
            if hash160(pubkey) == key_hash:
                return pubkey, sig
        return None

    def check_older(self, value):
        return self.max_sequence >= value

    def check_after(self, value):
        return self.max_lock_time >= value

    def lookup_n_version(self):
        return self.n_version

    def lookup_hash_prevouts(self):
        return self.hash_prevouts

    def lookup_hash_sequence(self):
        return self.hash_sequence

    def lookup_hash_issuances(self):
        return self.hash_issuances

    def lookup_outpoint(self):
        return self.outpoint

    def lookup_script_code(self):
        return self.script_code

    def lookup_value(self):
        return self.value

    def lookup_n_sequence(self):
        return self.n_sequence

    def lookup_outputs(self):
        return self.outputs

    def lookup_n_locktime(self):
        return self.n_locktime

    def lookup_sighash_type(self):
        return self.sighash_type

    def clear(self):
        self.preimages.clear()
        self.signatures.clear()
        self.max_sequence = 0
        self.max_lock_time = 0
        for item in self.SIGHASH_ITEMS:
            setattr(self, item, None)

    def __repr__(self):
        return (
            f"SatisfactionMaterial(preimages: {self.preimages}, signatures: "
            f"{self.signatures}, max_sequence: {self.max_sequence}, max_lock_time: "
            f"{self.max_lock_time})"
        )


class Satisfaction:
    """All information about a satisfaction."""

    def __init__(self, witness, has_sig=False, malleable=False):
        assert isinstance(witness, list) or witness is None
        self.witness = witness
        self.has_sig = has_sig
        # Whether to pick the smallest witness when choosing between two.
        self.malleable = malleable

    def __add__(self, other):
        """Concatenate two satisfactions together."""
        witness = add_optional(self.witness, other.witness)
        has_sig = self.has_sig or other.has_sig
        return Satisfaction(witness, has_sig, self.malleable or other.malleable)

    def __or__(self, other):
        """Choose between two (dis)satisfactions."""
        assert isinstance(other, Satisfaction)

        # If one isn't available, return the other one.
        if self.witness is None:
            return other
        if other.witness is None:
            return self

        if not (self.malleable or other.malleable):
            # > If instead exactly one does not have the HASSIG marker, return that
            # > solution because of reason 2.
            if self.has_sig and not other.has_sig:
                return other
            if not self.has_sig and other.has_sig:
                return self

        # > Otherwise, all not-DONTUSE options are valid, so return the smallest one (in
        # > terms of witness size).
        if self.size() > other.size():
            return other

        return self

    def unavailable():
        return Satisfaction(witness=None)

    def is_unavailable(self):
        return self.witness is None

    def size(self):
        return len(self.witness) + sum(len(elem) for elem in self.witness)

    def from_concat(sat_material, sub_a, sub_b, disjunction=False):
        """Get the satisfaction for a Miniscript whose Script corresponds to a
        concatenation of two subscripts A and B.

        :param sub_a: The sub-fragment A.
        :param sub_b: The sub-fragment B.
        :param disjunction: Whether this fragment has an 'or()' semantic.
        """
        if disjunction:
            return (sub_b.dissatisfaction() + sub_a.satisfaction(sat_material)) | (
                sub_b.satisfaction(sat_material) + sub_a.dissatisfaction()
            )
        return sub_b.satisfaction(sat_material) + sub_a.satisfaction(sat_material)

    def from_or_uneven(sat_material, sub_a, sub_b):
        """Get the satisfaction for a Miniscript which unconditionally executes a first
        sub A and only executes B if A was dissatisfied.

        :param sub_a: The sub-fragment A.
        :param sub_b: The sub-fragment B.
        """
        return sub_a.satisfaction(sat_material) | (
            sub_b.satisfaction(sat_material) + sub_a.dissatisfaction()
        )

    def from_thresh(sat_material, k, subs):
        """Get the satisfaction for a Miniscript which satisfies k of the given subs,
        and dissatisfies all the others.

        :param sat_material: The material to satisfy the challenges.
        :param k: The number of subs that need to be satisfied.
        :param subs: The list of all subs of the threshold.
        """
        # Pick the k sub-fragments to satisfy, prefering (in order):
        # 1. Fragments that don't require a signature to be satisfied
        # 2. Fragments whose satisfaction's size is smaller
        # Record the unavailable (in either way) ones as we go.
        arbitrage, unsatisfiable, undissatisfiable = [], [], []
        for sub in subs:
            sat, dissat = sub.satisfaction(sat_material), sub.dissatisfaction()
            if sat.witness is None:
                unsatisfiable.append(sub)
            elif dissat.witness is None:
                undissatisfiable.append(sub)
            else:
                sig_score = 0 if sat_material.malleable else int(sat.has_sig)
                arbitrage.append((sig_score, sat.size() - dissat.size(), sub))

        # If not enough (dis)satisfactions are available, fail.
        if len(unsatisfiable) > len(subs) - k or len(undissatisfiable) > k:
            return Satisfaction.unavailable()

        # Otherwise, satisfy the k most optimal ones.
        arbitrage = sorted(arbitrage, key=lambda x: x[:2])
        optimal_sat = undissatisfiable + [a[2] for a in arbitrage] + unsatisfiable
        to_satisfy = set(optimal_sat[:k])
        return sum(
            [
                sub.satisfaction(sat_material)
                if sub in to_satisfy
                else sub.dissatisfaction()
                for sub in subs[::-1]
            ],
            start=Satisfaction(witness=[]),
        )


class ExecutionInfo:
    """Information about the execution of a Miniscript."""

    def __init__(
        self, stat_ops, _dyn_ops, sat_elems, dissat_elems, sat_size=0, dissat_size=0
    ):
        # The *maximum* number of *always* executed non-PUSH Script OPs to satisfy this
        # Miniscript fragment non-malleably.
        self._static_ops_count = stat_ops
        # The maximum possible number of counted-as-executed-by-interpreter OPs if this
        # fragment is executed.
        # It is only >0 for an executed multi() branch. That is, for a CHECKMULTISIG that
        # is not part of an unexecuted branch of an IF .. ENDIF.
        self._dyn_ops_count = _dyn_ops
        # The *maximum* number of stack elements to satisfy this Miniscript fragment
        # non-malleably.
        self.sat_elems = sat_elems
        # The *maximum* number of stack elements to dissatisfy this Miniscript fragment
        # non-malleably.
        self.dissat_elems = dissat_elems
        # The *maximum* size in bytes of the stack elements to (dis)satisfy this
        # fragment, each element being accounted along with its length prefix.
        # None when it is impossible to (dis)satisfy.
        self.sat_size = sat_size if sat_elems is not None else None
        self.dissat_size = dissat_size if dissat_elems is not None else None

    @property
    def ops_count(self):
        """
        The worst-case number of OPs that would be considered executed by the Script
        interpreter.
        Note it is considered alone and not necessarily coherent with the other maxima.
        """
        return self._static_ops_count + self._dyn_ops_count

    def is_dissatisfiable(self):
        """Whether the Miniscript is *non-malleably* dissatisfiable."""
        return self.dissat_elems is not None

    def set_undissatisfiable(self):
        """Set the Miniscript as being impossible to dissatisfy."""
        self.dissat_elems = None
        self.dissat_size = None

    def from_concat(sub_a, sub_b, ops_count=0, disjunction=False):
        """Compute the execution info from a Miniscript whose Script corresponds to
        a concatenation of two subscript A and B.

        :param sub_a: The execution information of the subscript A.
        :param sub_b: The execution information of the subscript B.
        :param ops_count: The added number of static OPs added on top.
        :param disjunction: Whether this fragment has an 'or()' semantic.
        """
        # Number of static OPs is simple, they are all executed.
        static_ops = sub_a._static_ops_count + sub_b._static_ops_count + ops_count
        # Same for the dynamic ones, there is no conditional branch here.
        dyn_ops = sub_a._dyn_ops_count + sub_b._dyn_ops_count
        # If this is an 'or', only one needs to be satisfied. Pick the most expensive
        # satisfaction/dissatisfaction pair.
        # If not, both need to be anyways.
        if disjunction:
            sat_elems = max_optional(
                add_optional(sub_a.sat_elems, sub_b.dissat_elems),
                add_optional(sub_a.dissat_elems, sub_b.sat_elems),
            )
            sat_size = max_optional(
                add_optional(sub_a.sat_size, sub_b.dissat_size),
                add_optional(sub_a.dissat_size, sub_b.sat_size),
            )
        else:
            sat_elems = add_optional(sub_a.sat_elems, sub_b.sat_elems)
            sat_size = add_optional(sub_a.sat_size, sub_b.sat_size)
        # In any case dissatisfying the fragment requires dissatisfying both concatenated
        # subs.
        dissat_elems = add_optional(sub_a.dissat_elems, sub_b.dissat_elems)
        dissat_size = add_optional(sub_a.dissat_size, sub_b.dissat_size)

        return ExecutionInfo(
            static_ops, dyn_ops, sat_elems, dissat_elems, sat_size, dissat_size
        )

    def from_or_uneven(sub_a, sub_b, ops_count=0):
        """Compute the execution info from a Miniscript which always executes A and only
        executes B depending on the outcome of A's execution.

        :param sub_a: The execution information of the subscript A.
        :param sub_b: The execution information of the subscript B.
        :param ops_count: The added number of static OPs added on top.
        """
        # Number of static OPs is simple, they are all executed.
        static_ops = sub_a._static_ops_count + sub_b._static_ops_count + ops_count
        # If the first sub is non-malleably dissatisfiable, the worst case is executing
        # both. Otherwise it is necessarily satisfying only the first one.
        if sub_a.is_dissatisfiable():
            dyn_ops = sub_a._dyn_ops_count + sub_b._dyn_ops_count
        else:
            dyn_ops = sub_a._dyn_ops_count
        # Either we satisfy A, or satisfy B (and thereby dissatisfy A). Pick the most
        # expensive.
        sat_elems = max_optional(
            sub_a.sat_elems, add_optional(sub_a.dissat_elems, sub_b.sat_elems)
        )
        sat_size = max_optional(
            sub_a.sat_size, add_optional(sub_a.dissat_size, sub_b.sat_size)
        )
        # We only take canonical dissatisfactions into account.
        dissat_elems = add_optional(sub_a.dissat_elems, sub_b.dissat_elems)
        dissat_size = add_optional(sub_a.dissat_size, sub_b.dissat_size)

        return ExecutionInfo(
            static_ops, dyn_ops, sat_elems, dissat_elems, sat_size, dissat_size
        )

    def from_or_even(sub_a, sub_b, ops_count):
        """Compute the execution info from a Miniscript which executes either A or B, but
        never both.

        :param sub_a: The execution information of the subscript A.
        :param sub_b: The execution information of the subscript B.
        :param ops_count: The added number of static OPs added on top.
        """
        # Number of static OPs is simple, they are all executed.
        static_ops = sub_a._static_ops_count + sub_b._static_ops_count + ops_count
        # Only one of the branch is executed, pick the most expensive one.
        dyn_ops = max(sub_a._dyn_ops_count, sub_b._dyn_ops_count)
        # Same. Also, we add a stack element used to tell which branch to take: a 0x01
        # for the first branch and an empty vector for the second one.
        sat_elems = add_optional(max_optional(sub_a.sat_elems, sub_b.sat_elems), 1)
        sat_size = max_optional(
            add_optional(sub_a.sat_size, 2), add_optional(sub_b.sat_size, 1)
        )
        # Same here.
        dissat_elems = add_optional(
            max_optional(sub_a.dissat_elems, sub_b.dissat_elems), 1
        )
        dissat_size = max_optional(
            add_optional(sub_a.dissat_size, 2), add_optional(sub_b.dissat_size, 1)
        )

        return ExecutionInfo(
            static_ops, dyn_ops, sat_elems, dissat_elems, sat_size, dissat_size
        )

    def from_andor_uneven(sub_a, sub_b, sub_c, ops_count=0):
        """Compute the execution info from a Miniscript which always executes A, and then
        executes B if A returned True else executes C. Semantic: or(and(A,B), C).

        :param sub_a: The execution information of the subscript A.
        :param sub_b: The execution information of the subscript B.
        :param sub_c: The execution information of the subscript C.
        :param ops_count: The added number of static OPs added on top.
        """
        # Number of static OPs is simple, they are all executed.
        static_ops = (
            sum(sub._static_ops_count for sub in [sub_a, sub_b, sub_c]) + ops_count
        )
        # If the first sub is non-malleably dissatisfiable, the worst case is executing
        # it and the most expensive between B and C.
        # If it isn't the worst case is then necessarily to execute A and B.
        if sub_a.is_dissatisfiable():
            dyn_ops = sub_a._dyn_ops_count + max(
                sub_b._dyn_ops_count, sub_c._dyn_ops_count
            )
        else:
            dyn_ops = sub_a._dyn_ops_count + sub_b._dyn_ops_count
        # Same for the number of stack elements (implicit from None here).
        sat_elems = max_optional(
            add_optional(sub_a.sat_elems, sub_b.sat_elems),
            add_optional(sub_a.dissat_elems, sub_c.sat_elems),
        )
        sat_size = max_optional(
            add_optional(sub_a.sat_size, sub_b.sat_size),
            add_optional(sub_a.dissat_size, sub_c.sat_size),
        )
        # The only canonical dissatisfaction is dissatisfying A and C.
        dissat_elems = add_optional(sub_a.dissat_elems, sub_c.dissat_elems)
        dissat_size = add_optional(sub_a.dissat_size, sub_c.dissat_size)

        return ExecutionInfo(
            static_ops, dyn_ops, sat_elems, dissat_elems, sat_size, dissat_size
        )

    def from_thresh(k, subs):
        """Compute the execution info from a Miniscript 'thresh()' fragment. Specialized
        to this specifc fragment for now.

        :param k: The actual threshold of the 'thresh()' fragment.
        :param subs: All the possible sub scripts.
        """
        # All the OPs from the subs + n-1 * OP_ADD + 1 * OP_EQUAL
        static_ops = sum(sub._static_ops_count for sub in subs) + len(subs)
        # All subs are executed, there is no OP_IF branch.
        dyn_ops = sum([sub._dyn_ops_count for sub in subs])

        def worst_case(sat_attr, dissat_attr):
            # In order to estimate the worst case we simulate to satisfy the k subs whose
            # sat/dissat ratio is the largest, and dissatisfy the others.
            arbitrage, unsatisfiable, undissatisfiable = [], [], []
            for sub in subs:
                sat, dissat = getattr(sub, sat_attr), getattr(sub, dissat_attr)
                if sat is None:
                    unsatisfiable.append(sub)
                elif dissat is None:
                    undissatisfiable.append(sub)
                else:
                    arbitrage.append((sat - dissat, sub))
            # Of course, if too many can't be (dis)satisfied, we have a problem.
            if len(unsatisfiable) > len(subs) - k or len(undissatisfiable) > k:
                return None
            arbitrage = sorted(arbitrage, key=lambda x: x[0], reverse=True)
            worst_sat = undissatisfiable + [a[1] for a in arbitrage] + unsatisfiable
            return sum(
                [getattr(sub, sat_attr) for sub in worst_sat[:k]]
                + [getattr(sub, dissat_attr) for sub in worst_sat[k:]]
            )

        sat_elems = worst_case("sat_elems", "dissat_elems")
        sat_size = worst_case("sat_size", "dissat_size")
        if any(sub.dissat_elems is None for sub in subs):
            dissat_elems, dissat_size = None, None
        else:
            dissat_elems = sum([sub.dissat_elems for sub in subs])
            dissat_size = sum([sub.dissat_size for sub in subs])

        return ExecutionInfo(
            static_ops, dyn_ops, sat_elems, dissat_elems, sat_size, dissat_size
        )

    def from_wrap(sub, ops_count, dyn=0, sat=0, dissat=0, sat_size=0, dissat_size=0):
        """Compute the execution info from a Miniscript which always executes a subscript
        but adds some logic around.

        :param sub: The execution information of the single subscript.
        :param ops_count: The added number of static OPs added on top.
        :param dyn: The added number of dynamic OPs added on top.
        :param sat: The added number of satisfaction stack elements added on top.
        :param dissat: The added number of dissatisfcation stack elements added on top.
        :param sat_size: The added size of the satisfaction stack elements.
        :param dissat_size: The added size of the dissatisfaction stack elements.
        """
        return ExecutionInfo(
            sub._static_ops_count + ops_count,
            sub._dyn_ops_count + dyn,
            add_optional(sub.sat_elems, sat),
            add_optional(sub.dissat_elems, dissat),
            add_optional(sub.sat_size, sat_size),
            add_optional(sub.dissat_size, dissat_size),
        )

    def from_wrap_dissat(
        sub, ops_count, dyn=0, sat=0, dissat=0, sat_size=0, dissat_size=0
    ):
        """Compute the execution info from a Miniscript which always executes a subscript
        but adds some logic around, and has its own single dissatisfaction.

        :param sub: The execution information of the single subscript.
        :param ops_count: The added number of static OPs added on top.
        :param dyn: The added number of dynamic OPs added on top.
        :param sat: The added number of satisfaction stack elements added on top.
        :param dissat: The number of dissatisfaction stack elements.
        :param sat_size: The added size of the satisfaction stack elements.
        :param dissat_size: The size of the dissatisfaction stack elements.
        """
        return ExecutionInfo(
            sub._static_ops_count + ops_count,
            sub._dyn_ops_count + dyn,
            add_optional(sub.sat_elems, sat),
            dissat,
            add_optional(sub.sat_size, sat_size),
            dissat_size,
        )
