import re
from typing import Dict, List, Optional

from expr_ast import find_dependencies, match_value_shape, parse_macro_replacement
from categories import categorize_constant
from out_types import Constant, DeclarationError

# Header plumbing that is not a data constant
SKIP_NAMES = {
    "_SWEPHEXP_INCLUDED",
    "MY_TRUE",
    "MY_FALSE",
    "MALLOC",
    "CALLOC",
    "FREE",
    "CALL_CONV",
    "EXP32",
    "SIMULATE_VICTORVB",
    "TJD_INVALID",
    "ext_def",
}

DEFINE_RE = re.compile(r"^#\s*define\s+([A-Z][A-Z0-9_]*)\s+(.+?)(?:\s*/\*(.+?)\*/)?$")
FUNCTION_LIKE_RE = re.compile(r"^#\s*define\s+\w+\(")
BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")


class MacroProcessor:
    """
    Extracts object-like `#define` constants from header text.

    Only values of a small set of shapes are kept (numbers, simple arithmetic,
    references to other constants and bitwise combinations of them). In strict
    mode a define that is neither deny-listed nor a string/function-like macro
    but still has an unrecognised value raises DeclarationError instead of
    being dropped.
    """

    def __init__(self, strict: bool = False, verbose: bool = False):
        self.strict = strict
        self.verbose = verbose
        self.constants: Dict[str, Constant] = {}
        self.dropped: List[str] = []

    def _debug(self, msg: str):
        if self.verbose:
            print(f"DEBUG: {msg}")

    def collapse_comments(self, text: str) -> str:
        """Reduce block comments to their first line so trailing comments stay on one line."""
        def _collapse(match: re.Match) -> str:
            first = match.group(0).split("\n")[0]
            first = re.sub(r"/\*\s*", "", first, count=1)
            # single-line comment: the terminator is on the first line too
            if first.rstrip().endswith("*/"):
                first = first.rstrip()[:-2]
            first = first.strip()
            if first and len(first) < 80:
                return f"/* {first} */"
            return ""

        return BLOCK_COMMENT_RE.sub(_collapse, text)

    def process_line(self, line: str, lineno: int = 0) -> Optional[Constant]:
        if FUNCTION_LIKE_RE.match(line):
            return None
        match = DEFINE_RE.match(line)
        if not match:
            return None

        name = match.group(1)
        value = match.group(2).strip()
        comment = match.group(3).strip() if match.group(3) else None

        if name in SKIP_NAMES:
            self._debug(f"Skipping deny-listed define: {name}")
            return None

        # String literals
        if value.startswith('"') or value.startswith("'"):
            self._debug(f"Skipping string define: {name}")
            return None

        value = re.sub(r"/\*.*?\*/", "", value).strip()
        value = re.sub(r"//.*$", "", value).strip()
        if not value:
            return None

        shaped = match_value_shape(value)
        if shaped is None or parse_macro_replacement(shaped) is None:
            self.dropped.append(name)
            if self.strict:
                raise DeclarationError(
                    f"line {lineno}: unsupported value for #define {name}: {value!r}"
                )
            self._debug(f"Dropping {name}: unsupported value '{value}'")
            return None

        return Constant(
            name=name,
            value=shaped,
            dependencies=find_dependencies(shaped, own_name=name),
            category=categorize_constant(name),
            comment=comment,
        )

    def process_header(self, text: str) -> List[Constant]:
        """Returns constants in declaration order; a redefinition keeps the first one."""
        processed = self.collapse_comments(text)
        for lineno, line in enumerate(processed.splitlines(), start=1):
            const = self.process_line(line, lineno)
            if const is None:
                continue
            if const.name in self.constants:
                self._debug(f"Constant {const.name} already defined, keeping first definition")
                continue
            self.constants[const.name] = const
            self._debug(f"Added constant: {const.name} = {const.value}")
        return list(self.constants.values())
