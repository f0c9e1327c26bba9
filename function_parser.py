import keyword
import re
from typing import Dict, List, Optional

from categories import categorize_function
from out_types import DeclarationError, Function, Parameter

# Routines that return static strings or are commented out in the header
SKIP_FUNCTIONS = {
    "swe_version",
    "swe_get_library_path",
    "swe_cs2timestr",
    "swe_cs2lonlatstr",
    "swe_cs2degstr",
    "swe_get_ayanamsa_name",
    "swe_get_current_file_data",
    "swe_house_name",
    "swe_set_timeout",
}

COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
LINE_COMMENT_RE = re.compile(r"//[^\n]*")


class FunctionParser:
    """
    Collects routine declarations of the form `ext_def(type) name(params);`.

    The wrapper macro name is configurable so the same parser works for headers
    that spell it differently.
    """

    def __init__(self, wrapper: str = "ext_def", strict: bool = False, verbose: bool = False):
        self.wrapper = wrapper
        self.strict = strict
        self.verbose = verbose
        self.functions: Dict[str, Function] = {}
        self.reserved_keywords = set(keyword.kwlist)
        self._decl_re = re.compile(
            re.escape(wrapper) + r"\s*\(\s*([^)]+)\s*\)\s+(\w+)\s*\(([\s\S]*?)\)\s*;"
        )

    def _debug(self, msg: str):
        if self.verbose:
            print(f"DEBUG: {msg}")

    def _sanitize_name(self, name: str) -> str:
        """Appends an underscore to a name if it's a reserved keyword."""
        return f"{name}_" if name in self.reserved_keywords else name

    def _split_top_level(self, text: str) -> List[str]:
        """Split a comma-separated parameter list at top level, ignoring nested parens/brackets."""
        parts: List[str] = []
        buf: List[str] = []
        depth_paren = 0
        depth_bracket = 0
        for ch in text:
            if ch == '(':
                depth_paren += 1
            elif ch == ')':
                depth_paren -= 1
            elif ch == '[':
                depth_bracket += 1
            elif ch == ']':
                depth_bracket -= 1
            elif ch == ',' and depth_paren == 0 and depth_bracket == 0:
                parts.append(''.join(buf).strip())
                buf = []
                continue
            buf.append(ch)
        parts.append(''.join(buf).strip())
        return [p for p in parts if p]

    def parse_parameter(self, text: str, position: int) -> Optional[Parameter]:
        cleaned = re.sub(r"^const\s+", "", text.strip())
        is_pointer = "*" in cleaned
        # double xx[6] is passed as an address as well
        if re.search(r"\[[^\]]*\]\s*$", cleaned):
            is_pointer = True
            cleaned = re.sub(r"\s*\[[^\]]*\]\s*$", "", cleaned)
        cleaned = re.sub(r"\s*\*\s*", " ", cleaned)

        parts = cleaned.split()
        if not parts:
            return None
        if len(parts) == 1:
            return Parameter(name=f"arg{position}", ctype=parts[0], is_pointer=is_pointer)
        return Parameter(
            name=self._sanitize_name(parts[-1]),
            ctype=" ".join(parts[:-1]),
            is_pointer=is_pointer,
        )

    def parse_parameters(self, params_text: str) -> List[Parameter]:
        params_text = COMMENT_RE.sub("", params_text)
        params_text = LINE_COMMENT_RE.sub("", params_text)
        params_text = re.sub(r"\s+", " ", params_text).strip()
        if params_text in ("", "void"):
            return []

        params: List[Parameter] = []
        for raw in self._split_top_level(params_text):
            param = self.parse_parameter(raw, len(params))
            if param is not None:
                params.append(param)
        return params

    def process_header(self, text: str) -> List[Function]:
        """Returns routines in declaration order; a redeclaration keeps the first one."""
        for match in self._decl_re.finditer(text):
            return_type = match.group(1).strip()
            name = match.group(2).strip()
            if name in SKIP_FUNCTIONS:
                self._debug(f"Skipping deny-listed routine: {name}")
                continue
            if name in self.functions:
                self._debug(f"Routine {name} already declared, keeping first declaration")
                continue

            params = self.parse_parameters(match.group(3))
            if self.strict and len({p.name for p in params}) != len(params):
                raise DeclarationError(f"routine {name} declares the same parameter name twice")

            self.functions[name] = Function(
                name=name, return_type=return_type, parameters=params,
                category=categorize_function(name),
            )
            self._debug(f"Found Function: {name}({', '.join(p.name for p in params)})")
        return list(self.functions.values())
