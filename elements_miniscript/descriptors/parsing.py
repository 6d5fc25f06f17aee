import elements_miniscript.descriptors as descriptors

from elements_miniscript.key import DescriptorKey, DescriptorKeyError
from elements_miniscript.miniscript import Node
from elements_miniscript.miniscript.context import Tap
from elements_miniscript.miniscript.errors import (
    MiniscriptContextError,
    MiniscriptMalformed,
)

from .checksum import verify_checksum
from .errors import DescriptorParsingError
from .utils import TreeNode

# The namespace prefix of Elements descriptors, as in 'elwsh(...)'.
ELEMENTS_PREFIX = "el"


class Tree:
    """An expression of a descriptor string: a name and its arguments.

    The arguments are themselves expressions, kept as strings until the descriptor
    they belong to decides how to parse them (as a key, a Miniscript, a Taproot tree or
    another descriptor).
    """

    def __init__(self, name, args, string):
        self.name = name
        self.args = args
        # The whole expression, for the descriptors that parse it as a Miniscript.
        self.string = string

    def __repr__(self):
        return f"{self.name}({len(self.args)} args)"

    def from_str(string):
        """Split an expression in its name and top-level arguments."""
        i = string.find("(")
        if i < 0:
            return Tree(string, [], string)
        if not string.endswith(")"):
            raise DescriptorParsingError(f"Missing closing parenthesis in '{string}'")

        name, args, depth, start = string[:i], [], 0, i + 1
        for j in range(i + 1, len(string) - 1):
            char = string[j]
            if char in "({":
                depth += 1
            elif char in ")}":
                depth -= 1
                if depth < 0:
                    raise DescriptorParsingError(f"Unbalanced expression '{string}'")
            elif char == "," and depth == 0:
                args.append(string[start:j])
                start = j + 1
        if depth != 0:
            raise DescriptorParsingError(f"Unbalanced expression '{string}'")
        args.append(string[start:-1])

        return Tree(name, args, string)

    def unexpected(self, desc_name):
        """The error for an expression that isn't the descriptor {desc_name}."""
        return DescriptorParsingError(f"{self} while parsing {desc_name} descriptor")


def parse_key(key_str, x_only=False):
    try:
        return DescriptorKey(key_str, x_only=x_only)
    except DescriptorKeyError as e:
        raise DescriptorParsingError(f"Invalid key '{key_str}': {e.message}") from e


def parse_miniscript(ms_str, ctx):
    """Parse a Miniscript and make sure it can be used as the top level Script under
    {ctx}."""
    try:
        ms = Node.from_str(ms_str, ctx=ctx)
        ctx.top_level_checks(ms)
    except (MiniscriptMalformed, MiniscriptContextError) as e:
        raise DescriptorParsingError(
            f"Invalid {ctx.name} Miniscript '{ms_str}': {e.message}"
        ) from e
    return ms


def parse_tree_inner(tree_str):
    """Recursively called function to parse a tree exp. Returns a tuple (res, remaining) where
    res is the expression that was parsed (may be a Taproot tree node or a Miniscript) and remaining
    what's left to parse as a string.
    """
    if len(tree_str) == 0:
        raise DescriptorParsingError("Invalid Taproot tree expression")
    # A Tree Expression is either a Script expression or a pair of Tree Expressions
    # within braces, as in '{A,B}' (BIP386).
    if tree_str[0] != "{":
        # The leaf ends at the next separator of the enclosing tree expression.
        depth = 0
        for i, char in enumerate(tree_str):
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
            elif char in ",}" and depth == 0:
                break
        else:
            i = len(tree_str)
        return parse_miniscript(tree_str[:i], Tap), tree_str[i:]

    left_child, remaining = parse_tree_inner(tree_str[1:])
    if remaining[:1] != ",":
        raise DescriptorParsingError("Invalid Taproot tree expression")
    right_child, remaining = parse_tree_inner(remaining[1:])
    if remaining[:1] != "}":
        raise DescriptorParsingError("Invalid Taproot tree expression")
    return TreeNode(left_child, right_child), remaining[1:]


def parse_tree_exp(tree_str):
    """Parse a tree expression as defined in BIP386."""
    tree, remaining = parse_tree_inner(tree_str)
    if len(remaining) != 0:
        raise DescriptorParsingError(f"Unexpected trailing characters '{remaining}'")
    return tree


def split_prefix(desc_str):
    """Strip the Elements namespace prefix, if any.

    Returns whether it was present along with the remaining descriptor string.
    """
    if desc_str.startswith(ELEMENTS_PREFIX):
        return True, desc_str[len(ELEMENTS_PREFIX):]
    return False, desc_str


def descriptor_from_str(desc_str, strict=True):
    """Parse an Output Script Descriptor from its string representation.

    :param strict: whether to require the presence of a checksum.
    """
    desc_str = verify_checksum(desc_str, strict=strict)
    is_elements, desc_str = split_prefix(desc_str)
    tree = Tree.from_str(desc_str)

    if tree.name == "covwsh":
        if not is_elements:
            raise DescriptorParsingError(
                f"Covenant descriptors only exist on Elements, use '{ELEMENTS_PREFIX}covwsh'"
            )
        desc = descriptors.CovenantDescriptor.from_tree(tree)
    elif tree.name == "tr":
        desc = descriptors.TrDescriptor.from_tree(tree)
    else:
        desc = descriptors.PreTaprootDescriptor.from_tree(tree)

    desc.is_elements = is_elements
    return desc
