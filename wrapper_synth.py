from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from num2words import num2words

from function_config import FunctionTable
from out_types import (
    ConfigError, Function, FunctionConfig, OutputType, ResultShape, ShapeField,
    FLOAT64, INT32, FLOAT64_ARRAY, INT32_ARRAY, STRING, ERROR,
    RETURN_VOID, CHECKED_RETURN_MODES,
)

# Native scalar types as seen from Python
C_TO_PY = {
    "double": "float",
    "float": "float",
    "int": "int",
    "int32": "int",
    "int64": "int",
    "long": "int",
    "centisec": "int",
    "CSEC": "int",
    "AS_BOOL": "int",
    "char": "int",
    "void": "None",
}

OUTPUT_PY_TYPES = {
    FLOAT64: "float",
    INT32: "int",
    FLOAT64_ARRAY: "List[float]",
    INT32_ARRAY: "List[int]",
    STRING: "str",
}

OUTPUT_READERS = {
    FLOAT64: "get_float64",
    INT32: "get_int32",
    FLOAT64_ARRAY: "get_float64_array",
    INT32_ARRAY: "get_int32_array",
    STRING: "get_string",
}

INDENT = "    "


def py_type_for(ctype: str, is_pointer: bool = False) -> str:
    """Pointers are plain addresses into linear memory."""
    if is_pointer or "*" in ctype:
        return "int"
    ctype = ctype.replace("const ", "").strip()
    if ctype.startswith("unsigned "):
        ctype = ctype[len("unsigned "):]
    return C_TO_PY.get(ctype, "float")


def result_class_name(friendly_name: str) -> str:
    """moon_node_crossing -> MoonNodeCrossingResult"""
    return "".join(part[:1].upper() + part[1:] for part in friendly_name.split("_") if part) + "Result"


def describe_output(param: str, out: OutputType) -> str:
    if out.is_array:
        return f"{param}: {num2words(out.count)} {out.kind[:-2]} values"
    if out.kind == STRING:
        return f"{param}: string buffer of {num2words(out.size)} bytes"
    if out.kind == ERROR:
        return f"{param}: error buffer of {num2words(out.size)} bytes"
    return f"{param}: {out.kind}"


def _unique(base: str, taken: Set[str]) -> str:
    name = base
    while name in taken:
        name += "_"
    taken.add(name)
    return name


@dataclass
class Allocation:
    param: str
    pointer: str
    size: int = 0
    string_input: bool = False
    clear: bool = False


@dataclass
class WrapperPlan:
    """Everything needed to render one wrapper method."""
    func: Function
    config: FunctionConfig
    signature: List[str] = field(default_factory=list)
    call_args: List[str] = field(default_factory=list)
    allocations: List[Allocation] = field(default_factory=list)
    pointers: Dict[str, str] = field(default_factory=dict)
    values: Dict[str, str] = field(default_factory=dict)
    locals: Dict[str, str] = field(default_factory=dict)
    return_type: str = "None"
    result_class: Optional[str] = None


class WrapperSynthesizer:
    """
    Turns a routine declaration plus its configuration into a method of the
    generated SwissEph class.

    Outputs leave the signature and are allocated inside the method, input
    strings stay in place typed `str`, every other parameter is passed
    through. All allocations hang off one ExitStack so each is freed exactly
    once whichever way the method exits.
    """

    def __init__(self, table: FunctionTable, verbose: bool = False):
        self.table = table
        self.verbose = verbose
        self.result_classes: Dict[str, str] = {}

    def _debug(self, msg: str):
        if self.verbose:
            print(f"DEBUG: {msg}")

    # --- Planning ---

    def plan(self, func: Function, config: FunctionConfig) -> WrapperPlan:
        plan = WrapperPlan(func=func, config=config)
        taken: Set[str] = {"self"} | {
            p.name for p in func.parameters if p.name not in config.outputs
        }
        for base in ("raw", "mem", "stack", "ret"):
            plan.locals[base] = _unique(base, taken)

        for name, out in config.outputs.items():
            plan.pointers[name] = _unique(f"{name}_ptr", taken)
            if not out.is_error:
                plan.values[name] = _unique(name, taken)
            plan.allocations.append(Allocation(
                param=name,
                pointer=plan.pointers[name],
                size=out.byte_size(),
                clear=out.kind in (STRING, ERROR),
            ))
        for name in config.input_strings:
            plan.pointers[name] = _unique(f"{name}_ptr", taken)
            plan.allocations.append(Allocation(param=name, pointer=plan.pointers[name], string_input=True))

        for p in func.parameters:
            if p.name in config.outputs:
                plan.call_args.append(plan.pointers[p.name])
            elif p.name in config.input_strings:
                plan.signature.append(f"{p.name}: str")
                plan.call_args.append(plan.pointers[p.name])
            elif p.name in self.table.symbolic_code_params and not p.is_pointer:
                plan.signature.append(f"{p.name}: Union[int, str]")
                plan.call_args.append(f"(ord({p.name}) if isinstance({p.name}, str) else {p.name})")
            else:
                plan.signature.append(f"{p.name}: {py_type_for(p.ctype, p.is_pointer)}")
                plan.call_args.append(p.name)

        value_outputs = config.value_outputs
        if not value_outputs:
            plan.return_type = "None" if config.return_mode == RETURN_VOID else py_type_for(func.return_type)
        elif config.result_shape is not None:
            plan.return_type = config.result_shape
        elif len(value_outputs) == 1:
            plan.return_type = OUTPUT_PY_TYPES[config.outputs[value_outputs[0]].kind]
        else:
            plan.result_class = result_class_name(config.friendly_name)
            plan.return_type = plan.result_class
        return plan

    # --- Result classes ---

    def _field_annotation(self, f: ShapeField) -> str:
        if f.annotation:
            annotation = f.annotation
        elif f.shape is not None:
            annotation = f.shape
        elif f.index is not None:
            annotation = "float"
        else:
            annotation = "List[float]"
        return f"Optional[{annotation}]" if f.optional else annotation

    def render_shape_class(self, shape: ResultShape) -> str:
        header = f"class {shape.name}({shape.base}):" if shape.base else f"class {shape.name}:"
        lines = ["@dataclass", header]
        if shape.doc:
            lines.append(f'{INDENT}"""{shape.doc}"""')
        for f in shape.fields:
            default = " = None" if f.optional else ""
            lines.append(f"{INDENT}{f.name}: {self._field_annotation(f)}{default}")
        if not shape.fields and not shape.doc:
            lines.append(f"{INDENT}pass")
        return "\n".join(lines)

    def render_shape_classes(self) -> List[str]:
        """Shape dataclasses in table order, each after its base and nested shapes."""
        emitted: List[str] = []
        rendered: List[str] = []

        def visit(name: str):
            if name in emitted:
                return
            shape = self.table.shapes[name]
            if shape.base:
                visit(shape.base)
            for f in shape.fields:
                if f.shape:
                    visit(f.shape)
            emitted.append(name)
            rendered.append(self.render_shape_class(shape))

        for name in self.table.shapes:
            visit(name)
        return rendered

    def render_result_class(self, plan: WrapperPlan) -> str:
        config = plan.config
        lines = ["@dataclass", f"class {plan.result_class}:"]
        lines.append(f'{INDENT}"""Outputs of {plan.func.name}."""')
        for name in config.value_outputs:
            out = config.outputs[name]
            lines.append(f"{INDENT}{out.name or name}: {OUTPUT_PY_TYPES[out.kind]}")
        return "\n".join(lines)

    # --- Method rendering ---

    def _docstring(self, plan: WrapperPlan, indent: str) -> List[str]:
        config = plan.config
        summary = config.description or f"Calls {plan.func.name}."
        body: List[str] = []
        for name, out in config.outputs.items():
            body.append(describe_output(name, out))
        if config.return_mode in CHECKED_RETURN_MODES:
            body.append("Raises SwissEphError when the routine returns a negative code.")
        if not body:
            return [f'{indent}"""{summary}"""']
        return [f'{indent}"""', f"{indent}{summary}", ""] + [f"{indent}{line}" for line in body] + [f'{indent}"""']

    def _shape_expr(self, shape_name: str, sources: List[str], indent: str) -> str:
        parts = []
        for f in self.table.shape_fields(shape_name):
            if f.output >= len(sources):
                parts.append(f"{f.name}=None")
                continue
            src = sources[f.output]
            if f.shape is not None:
                value = self._shape_expr(f.shape, [src], indent + INDENT)
            elif f.index is not None:
                value = f"{src}[{f.index}]"
            elif f.start is not None:
                value = f"{src}[{f.start}:]"
            else:
                value = src
            parts.append(f"{f.name}={value}")
        inner = "".join(f"\n{indent}{INDENT}{p}," for p in parts)
        return f"{shape_name}({inner}\n{indent})"

    def _result_lines(self, plan: WrapperPlan, indent: str) -> List[str]:
        config = plan.config
        mem = plan.locals["mem"]
        lines: List[str] = []
        value_outputs = config.value_outputs
        for name in value_outputs:
            out = config.outputs[name]
            reader = OUTPUT_READERS[out.kind]
            args = plan.pointers[name] + (f", {out.count}" if out.is_array else "")
            lines.append(f"{indent}{plan.values[name]} = {mem}.{reader}({args})")

        sources = [plan.values[name] for name in value_outputs]
        if config.result_shape is not None:
            lines.append(f"{indent}return {self._shape_expr(config.result_shape, sources, indent)}")
        elif len(value_outputs) == 1:
            lines.append(f"{indent}return {sources[0]}")
        else:
            args = ", ".join(
                f"{config.outputs[name].name or name}={plan.values[name]}" for name in value_outputs
            )
            lines.append(f"{indent}return {plan.result_class}({args})")
        return lines

    def _call_lines(self, plan: WrapperPlan, raw: str, indent: str) -> List[str]:
        config = plan.config
        call = f"{raw}.{plan.func.name}({', '.join(plan.call_args)})"
        ret = plan.locals["ret"]
        checked = config.return_mode in CHECKED_RETURN_MODES
        returns_raw = not config.value_outputs and config.return_mode != RETURN_VOID

        if not checked:
            if returns_raw:
                return [f"{indent}return {call}"]
            return [f"{indent}{call}"]

        lines = [f"{indent}{ret} = {call}", f"{indent}if {ret} < 0:"]
        message = repr(self.table.error_message)
        error_param = config.error_output
        if error_param is not None:
            message = f"{plan.locals['mem']}.get_string({plan.pointers[error_param]}) or {message}"
        lines.append(f"{indent}{INDENT}raise SwissEphError({message}, {ret})")
        if returns_raw:
            lines.append(f"{indent}return {ret}")
        return lines

    def render_method(self, plan: WrapperPlan) -> str:
        config = plan.config
        args = ", ".join(["self"] + plan.signature)
        lines = [f"{INDENT}def {config.friendly_name}({args}) -> {plan.return_type}:"]
        body = INDENT * 2
        lines.extend(self._docstring(plan, body))

        if not plan.allocations:
            lines.extend(self._call_lines(plan, "self.raw", body))
            return "\n".join(lines)

        raw, mem, stack = plan.locals["raw"], plan.locals["mem"], plan.locals["stack"]
        lines.append(f"{body}{raw}, {mem} = self.raw, self.mem")
        lines.append(f"{body}with ExitStack() as {stack}:")
        inner = body + INDENT
        for alloc in plan.allocations:
            if alloc.string_input:
                lines.append(f"{inner}{alloc.pointer} = {mem}.alloc_string({alloc.param})")
            else:
                lines.append(f"{inner}{alloc.pointer} = {raw}.malloc({alloc.size})")
            lines.append(f"{inner}{stack}.callback({raw}.free, {alloc.pointer})")
            if alloc.clear:
                lines.append(f"{inner}{mem}.clear({alloc.pointer}, {alloc.size})")
        lines.extend(self._call_lines(plan, raw, inner))
        if config.value_outputs:
            lines.extend(self._result_lines(plan, inner))
        return "\n".join(lines)

    def synthesize(self, func: Function, config: FunctionConfig) -> Optional[str]:
        """Method text for one routine, or None when the routine is skipped."""
        if config.skip:
            self._debug(f"Skipping wrapper for {func.name}")
            return None
        plan = self.plan(func, config)
        if plan.result_class is not None:
            if plan.result_class in self.table.shapes or plan.result_class in self.result_classes:
                raise ConfigError(f"{func.name}: result class name '{plan.result_class}' is already taken")
            self.result_classes[plan.result_class] = self.render_result_class(plan)
        self._debug(f"Synthesized {config.friendly_name} -> {func.name}")
        return self.render_method(plan)
