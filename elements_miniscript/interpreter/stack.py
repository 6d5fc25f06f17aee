"""The stack of the interpreter, built from a scriptSig or a witness."""

from ..utils.script import CScript, CScriptInvalidError

from .errors import ExpectedPush, UnexpectedStackEnd


class Element:
    """An element of the stack.

    Pushes of the empty vector and of the number 1 are the result of a dissatisfaction
    and a satisfaction, respectively. Any other element is a plain push of data.
    """

    PUSH = 0
    SATISFIED = 1
    DISSATISFIED = 2

    def __init__(self, kind, data=b""):
        assert kind in (Element.PUSH, Element.SATISFIED, Element.DISSATISFIED)
        assert isinstance(data, bytes)
        self.kind = kind
        self.data = data

    def from_bytes(data):
        if data == b"\x01":
            return SATISFIED
        if data == b"":
            return DISSATISFIED
        return Push(data)

    def is_push(self):
        return self.kind == Element.PUSH

    def as_push(self):
        """The pushed data, raise if this element is the result of a (dis)satisfaction."""
        if not self.is_push():
            raise ExpectedPush()
        return self.data

    def __eq__(self, other):
        return (
            isinstance(other, Element)
            and self.kind == other.kind
            and self.data == other.data
        )

    def __hash__(self):
        return hash((self.kind, self.data))

    def __repr__(self):
        if self.kind == Element.SATISFIED:
            return "Satisfied"
        if self.kind == Element.DISSATISFIED:
            return "Dissatisfied"
        return f"Push({self.data.hex()})"


def Push(data):
    return Element(Element.PUSH, data)


SATISFIED = Element(Element.SATISFIED)
DISSATISFIED = Element(Element.DISSATISFIED)


class Stack:
    """A stack of elements. The top of the stack is the last element of the list."""

    def __init__(self, elements=None):
        self.elements = list(elements) if elements is not None else []

    def from_script_sig(script_sig):
        """Create a stack from the pushes of a scriptSig.

        Raises an ExpectedPush if the scriptSig contains anything else than minimal
        pushes.
        """
        assert isinstance(script_sig, CScript)
        elements = []
        try:
            for push in script_sig.minimal_pushes():
                if isinstance(push, bytes):
                    elements.append(Element.from_bytes(push))
                elif push == 1:
                    elements.append(SATISFIED)
                else:
                    raise ExpectedPush()
        except CScriptInvalidError as e:
            raise ExpectedPush() from e
        return Stack(elements)

    def from_witness(witness):
        """Create a stack from the elements of a witness, ordered bottom to top."""
        return Stack(Element.from_bytes(bytes(elem)) for elem in witness)

    def __len__(self):
        return len(self.elements)

    def __iter__(self):
        """Iterate from the bottom to the top of the stack."""
        return iter(self.elements)

    def __eq__(self, other):
        return isinstance(other, Stack) and self.elements == other.elements

    def __repr__(self):
        return f"Stack({self.elements})"

    def is_empty(self):
        return len(self.elements) == 0

    def push(self, elem):
        assert isinstance(elem, Element)
        self.elements.append(elem)

    def pop(self):
        """Remove and return the element at the top of the stack."""
        if self.is_empty():
            raise UnexpectedStackEnd()
        return self.elements.pop()

    def last(self):
        """The element at the top of the stack, None if it is empty."""
        if self.is_empty():
            return None
        return self.elements[-1]
