#!/usr/bin/env python3
import argparse
import difflib
import os
import sys
import tempfile
from typing import Dict, List, Optional, Tuple

from categories import (
    CONSTANT_CATEGORIES, FUNCTION_CATEGORIES, FUNCTION_CATEGORY_TITLES,
    category_heading, group_by_category,
)
from dependency_resolver import CYCLE_PERMIT, CYCLE_POLICIES, DependencyResolver
from expr_ast import parse_macro_replacement, render_expr
from function_config import FunctionTable, load_function_table
from function_parser import FunctionParser
from macro_processor import MacroProcessor
from out_types import BindgenError, Constant, Function, FunctionConfig
from wrapper_synth import WrapperSynthesizer, py_type_for

GENERATED_BANNER = "# Generated from {header} by swephbindgen. Do not edit."

# --- Core Binding Generator ---

class BindingGenerator:
    """
    Generates Python bindings for the Swiss Ephemeris from swephexp.h.

    The header is scanned for `#define` constants and `ext_def(...)` routine
    declarations; the constants are ordered so that every reference is defined
    first, and every routine gets a wrapper method driven by the routine table.
    """

    def __init__(self, config_path: Optional[str] = None, strict: bool = False,
                 cycles: str = CYCLE_PERMIT, verbose: bool = False, wrapper: str = "ext_def"):
        self.strict = strict
        self.verbose = verbose
        self.table: FunctionTable = load_function_table(config_path)
        self.resolver = DependencyResolver(cycles=cycles, verbose=verbose)
        self.wrapper = wrapper
        self.header_name = "swephexp.h"

        self.constants: List[Constant] = []
        self.sorted_constants: List[Constant] = []
        self.functions: List[Function] = []
        self.wrappers: List[Tuple[Function, FunctionConfig]] = []
        self.dropped: List[str] = []

    def _debug(self, msg: str):
        if self.verbose:
            print(f"DEBUG: {msg}")

    @property
    def excluded(self) -> List[str]:
        return self.resolver.excluded

    def parse_header(self, header_path: str):
        """Reads and parses the header file."""
        if not os.path.exists(header_path):
            raise FileNotFoundError(f"Header file not found: {header_path}")

        print(f"Parsing header: {header_path}")
        with open(header_path, "r", encoding="utf-8") as f:
            text = f.read()
        self.header_name = os.path.basename(header_path)
        self.parse_header_text(text)

    def parse_header_text(self, text: str):
        macros = MacroProcessor(strict=self.strict, verbose=self.verbose)
        self.constants = macros.process_header(text)
        self.dropped = macros.dropped

        parser = FunctionParser(wrapper=self.wrapper, strict=self.strict, verbose=self.verbose)
        self.functions = parser.process_header(text)

        # Category order first, then pull dependencies ahead of their dependents
        rank = {category: i for i, category in enumerate(CONSTANT_CATEGORIES)}
        by_category = sorted(self.constants, key=lambda c: rank[c.category])
        self.sorted_constants = self.resolver.resolve(by_category)
        for name in self.resolver.cyclic:
            self._debug(f"Constant {name} is part of a reference cycle")

        self.wrappers = self.table.resolve(self.functions)

    # --- Emitters ---

    def _banner(self, title: str) -> List[str]:
        return [f"# {title}", GENERATED_BANNER.format(header=self.header_name)]

    def generate_constants(self) -> str:
        lines = self._banner("Swiss Ephemeris constants")
        current = None
        for const in self.sorted_constants:
            if const.category != current:
                current = const.category
                lines.append("")
                lines.append(f"# {category_heading(current)}")
            expr = parse_macro_replacement(const.value)
            value = render_expr(expr) if expr is not None else const.value
            comment = f"  # {const.comment}" if const.comment else ""
            lines.append(f"{const.name} = {value}{comment}")
        return "\n".join(lines) + "\n"

    def generate_functions(self) -> str:
        lines = self._banner("Swiss Ephemeris raw interface")
        lines += [
            "from typing import Any, Protocol",
            "",
            "",
            "class SwissEphRaw(Protocol):",
            '    """',
            "    Exports of a loaded Swiss Ephemeris module.",
            "",
            "    Pointer parameters (double*, int*, char*) are addresses into `memory`.",
            "    Use memory_helpers.MemoryHelpers to read and write values there.",
            '    """',
            "",
            "    # Linear memory, a writable bytes-like buffer",
            "    memory: Any",
            "",
            "    def malloc(self, size: int) -> int: ...",
            "",
            "    def free(self, ptr: int) -> None: ...",
        ]
        groups = group_by_category(self.functions, lambda f: f.category, FUNCTION_CATEGORIES)
        for category, funcs in groups.items():
            lines.append("")
            lines.append(f"    # {FUNCTION_CATEGORY_TITLES[category]}")
            for func in funcs:
                params = "".join(f", {p.name}: {py_type_for(p.ctype, p.is_pointer)}" for p in func.parameters)
                lines.append(f"    def {func.name}(self{params}) -> {py_type_for(func.return_type)}: ...")
        return "\n".join(lines) + "\n"

    def generate_friendly(self) -> str:
        synth = WrapperSynthesizer(self.table, verbose=self.verbose)

        groups = group_by_category(self.wrappers, lambda pair: pair[0].category, FUNCTION_CATEGORIES)
        methods: List[str] = []
        for category, pairs in groups.items():
            methods.append(f"    # --- {FUNCTION_CATEGORY_TITLES[category]} ---")
            for func, config in pairs:
                text = synth.synthesize(func, config)
                if text is not None:
                    methods.append(text)

        shape_classes = synth.render_shape_classes()
        result_classes = list(synth.result_classes.values())
        exported = list(self.table.shapes) + list(synth.result_classes) + ["SwissEph", "SwissEphError"]

        lines = self._banner("Swiss Ephemeris wrappers")
        lines += [
            "from contextlib import ExitStack",
            "from dataclasses import dataclass",
            "from typing import TYPE_CHECKING, List, Optional, Union",
            "",
            "from memory_helpers import MemoryHelpers, SwissEphError",
            "",
            "if TYPE_CHECKING:",
            "    from .functions import SwissEphRaw",
            "",
            "__all__ = [",
        ]
        lines += [f'    "{name}",' for name in exported]
        lines.append("]")

        lines += ["", "", "# Result types"]
        for text in shape_classes + result_classes:
            lines += ["", "", text]

        lines += [
            "",
            "",
            "class SwissEph:",
            '    """',
            "    Swiss Ephemeris routines with automatic memory management.",
            "",
            "    Every method allocates the buffers its routine needs and frees them",
            "    before returning, also when the routine reports an error.",
            '    """',
            "",
            '    def __init__(self, raw: "SwissEphRaw", mem: Optional[MemoryHelpers] = None):',
            "        self.raw = raw",
            "        self.mem = mem if mem is not None else MemoryHelpers(raw)",
            "",
            "    def malloc(self, size: int) -> int:",
            "        return self.raw.malloc(size)",
            "",
            "    def free(self, ptr: int) -> None:",
            "        self.raw.free(ptr)",
        ]
        for text in methods:
            lines += ["", text]
        return "\n".join(lines) + "\n"

    def generate_index(self) -> str:
        lines = self._banner("Swiss Ephemeris bindings")
        lines += [
            "from .constants import *  # noqa: F401,F403",
            "from .functions import SwissEphRaw  # noqa: F401",
            "from .friendly import *  # noqa: F401,F403",
        ]
        return "\n".join(lines) + "\n"

    def generate_exports(self) -> str:
        exports = ["_malloc", "_free"] + [f"_{func.name}" for func in self.functions]
        quoted = ", ".join(f'"{name}"' for name in exports)
        return (
            "# Add this to Makefile.wasm EXPORTED_FUNCTIONS\n"
            f"EXPORTED_FUNCTIONS='[{quoted}]'\n"
            "\n"
            f"# Function count: {len(self.functions)}\n"
        )

    def render_artifacts(self, output_dir: str, exports_path: str) -> Dict[str, str]:
        """Renders every artifact before anything touches the disk."""
        return {
            os.path.join(output_dir, "constants.py"): self.generate_constants(),
            os.path.join(output_dir, "functions.py"): self.generate_functions(),
            os.path.join(output_dir, "friendly.py"): self.generate_friendly(),
            os.path.join(output_dir, "__init__.py"): self.generate_index(),
            exports_path: self.generate_exports(),
        }


# --- Writing ---

def _read_existing(path: str) -> Optional[str]:
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def check_artifacts(files: Dict[str, str]) -> List[str]:
    """Prints a unified diff for every artifact that differs from disk and returns their paths."""
    drifted: List[str] = []
    for path, content in files.items():
        existing = _read_existing(path)
        if existing == content:
            continue
        drifted.append(path)
        diff = difflib.unified_diff(
            (existing or "").splitlines(),
            content.splitlines(),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
            lineterm="",
        )
        print("\n".join(diff))
    return drifted


def write_artifacts(files: Dict[str, str]) -> List[str]:
    """
    Writes all artifacts or none of them.

    Changed files are first written to temporary siblings; only when every one
    of them has been staged are they moved into place. If a move fails, files
    already moved are restored to their previous contents. Unchanged files are
    left alone. Returns the paths that were written.
    """
    previous = {path: _read_existing(path) for path in files}
    changed = {path: content for path, content in files.items() if previous[path] != content}
    staged: Dict[str, str] = {}
    replaced: List[str] = []
    try:
        for path, content in changed.items():
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory)
            staged[path] = tmp
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                f.write(content)
        for path, tmp in staged.items():
            os.replace(tmp, path)
            replaced.append(path)
    except OSError:
        for path in replaced:
            _restore(path, previous[path])
        for tmp in staged.values():
            if os.path.exists(tmp):
                os.remove(tmp)
        raise
    return replaced


def _restore(path: str, content: Optional[str]):
    if content is None:
        os.remove(path)
        return
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(content)


# --- Main Execution ---
def main(argv: Optional[List[str]] = None):
    """Command-line interface for the binding generator."""
    parser = argparse.ArgumentParser(
        description="Generate Python bindings for the Swiss Ephemeris from swephexp.h."
    )
    parser.add_argument(
        "header", nargs="?", default="swephexp.h",
        help="Path to the Swiss Ephemeris header (default: swephexp.h)."
    )
    parser.add_argument(
        "-o", "--output-dir", default="generated",
        help="Directory for the generated modules (default: generated)."
    )
    parser.add_argument(
        "--exports", default="makefile-exports.txt",
        help="Path of the EXPORTED_FUNCTIONS list (default: makefile-exports.txt)."
    )
    parser.add_argument(
        "--config", default=None,
        help="Routine configuration YAML (default: the bundled function_config.yaml)."
    )
    parser.add_argument(
        "--strict", action="store_true",
        help="Fail on #define values that cannot be translated instead of dropping them."
    )
    parser.add_argument(
        "--cycles", choices=CYCLE_POLICIES, default=CYCLE_PERMIT,
        help="How to treat constants that reference each other in a cycle (default: permit)."
    )
    parser.add_argument(
        "--check", action="store_true",
        help="Do not write anything; exit with 1 if the generated files are out of date."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Print DEBUG trace lines.")

    args = parser.parse_args(argv)

    try:
        generator = BindingGenerator(
            config_path=args.config, strict=args.strict, cycles=args.cycles, verbose=args.verbose
        )
        generator.parse_header(args.header)

        print("\n--- Parsing Summary ---")
        print(f"Constants: {len(generator.sorted_constants)}, Excluded: {len(generator.excluded)}, "
              f"Dropped: {len(generator.dropped)}")
        print(f"Functions: {len(generator.functions)}, Wrappers: {len(generator.wrappers)}")
        print("-----------------------")

        files = generator.render_artifacts(args.output_dir, args.exports)

        if args.check:
            drifted = check_artifacts(files)
            if drifted:
                print(f"\n{len(drifted)} generated file(s) out of date.", file=sys.stderr)
                sys.exit(1)
            print("\nGenerated files are up to date.")
            return

        written = write_artifacts(files)
        for path in written:
            print(f"Generated {path}")
        print(f"\nSuccessfully generated Python bindings in: {args.output_dir}")

    except (OSError, BindgenError) as e:
        print(f"An error occurred: {e}", file=sys.stderr)
        sys.exit(1)

if __name__ == "__main__":
    main()
