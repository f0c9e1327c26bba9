import keyword
import os
from typing import Any, Dict, List, Optional, Tuple

import yaml

from out_types import (
    ConfigError, Function, FunctionConfig, OutputType, ResultShape, ShapeField,
    OUTPUT_KINDS, RETURN_MODES, STRING, ERROR,
)

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "function_config.yaml")

# Attribute names the generated SwissEph class already uses
RESERVED_METHOD_NAMES = {"raw", "mem", "malloc", "free"}

FUNCTION_KEYS = {"name", "description", "outputs", "input_strings", "returns", "result", "skip"}
OUTPUT_KEYS = {"type", "count", "size", "name"}
SHAPE_KEYS = {"doc", "base", "fields"}
FIELD_KEYS = {"name", "output", "index", "start", "shape", "optional", "type"}


def _require_mapping(value: Any, where: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{where}: expected a mapping, got {type(value).__name__}")
    return value

def _check_keys(entry: Dict[str, Any], allowed: set, where: str):
    unknown = sorted(set(entry) - allowed)
    if unknown:
        raise ConfigError(f"{where}: unknown key(s) {', '.join(unknown)}")

def _positive_int(value: Any, where: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ConfigError(f"{where}: expected a positive integer, got {value!r}")
    return value

def _is_method_name(name: str) -> bool:
    return name.isidentifier() and not keyword.iskeyword(name)


class FunctionTable:
    """
    Static wrapper configuration, keyed by native routine name.

    Routines absent from the table get a default configuration: the native
    name minus the prefix, no outputs and the raw return value passed through.
    """

    def __init__(self, functions: Dict[str, FunctionConfig], shapes: Dict[str, ResultShape],
                 prefix: str = "swe_", default_return: str = "number",
                 error_message: str = "Swiss Ephemeris error",
                 symbolic_code_params: Optional[List[str]] = None):
        self.functions = functions
        self.shapes = shapes
        self.prefix = prefix
        self.default_return = default_return
        self.error_message = error_message
        self.symbolic_code_params = list(symbolic_code_params or [])

    def get_function_config(self, native_name: str) -> FunctionConfig:
        config = self.functions.get(native_name)
        if config is not None:
            return config
        friendly = native_name[len(self.prefix):] if native_name.startswith(self.prefix) else native_name
        return FunctionConfig(friendly_name=friendly, return_mode=self.default_return)

    def shape_fields(self, shape_name: str) -> List[ShapeField]:
        """All fields of a shape, inherited ones first."""
        shape = self.shapes[shape_name]
        inherited = self.shape_fields(shape.base) if shape.base else []
        return inherited + list(shape.fields)

    def resolve(self, functions: List[Function]) -> List[Tuple[Function, FunctionConfig]]:
        """
        Pairs every declared routine with its configuration and checks the
        configuration against the declaration. Skipped routines are left out.
        """
        pairs: List[Tuple[Function, FunctionConfig]] = []
        seen: Dict[str, str] = {}
        for func in functions:
            config = self.get_function_config(func.name)
            if config.skip:
                continue
            self._check_against_declaration(func, config)
            other = seen.get(config.friendly_name)
            if other is not None:
                raise ConfigError(
                    f"{func.name}: wrapper name '{config.friendly_name}' is already used by {other}"
                )
            seen[config.friendly_name] = func.name
            pairs.append((func, config))
        return pairs

    def _check_against_declaration(self, func: Function, config: FunctionConfig):
        if not _is_method_name(config.friendly_name) or config.friendly_name in RESERVED_METHOD_NAMES:
            raise ConfigError(f"{func.name}: '{config.friendly_name}' cannot be used as a method name")
        for name in list(config.outputs) + list(config.input_strings):
            param = func.parameter(name)
            if param is None:
                raise ConfigError(f"{func.name}: configured parameter '{name}' is not declared")
            if not param.is_pointer:
                raise ConfigError(f"{func.name}: parameter '{name}' is not a pointer")
        overlap = set(config.outputs) & set(config.input_strings)
        if overlap:
            raise ConfigError(f"{func.name}: '{sorted(overlap)[0]}' is both an output and an input string")


class FunctionTableLoader:
    """Builds a FunctionTable from the YAML document."""

    def __init__(self, source: str = "<config>"):
        self.source = source

    def _where(self, *parts: str) -> str:
        return ":".join((self.source,) + parts)

    def load(self, doc: Any) -> FunctionTable:
        doc = _require_mapping(doc, self._where())
        _check_keys(doc, {"defaults", "result_shapes", "functions"}, self._where())

        defaults = _require_mapping(doc.get("defaults"), self._where("defaults"))
        _check_keys(defaults, {"prefix", "returns", "error_message", "symbolic_code_params"},
                    self._where("defaults"))
        default_return = defaults.get("returns", "number")
        if default_return not in RETURN_MODES:
            raise ConfigError(f"{self._where('defaults')}: unknown return mode '{default_return}'")

        shapes = {
            name: self._load_shape(name, entry)
            for name, entry in _require_mapping(doc.get("result_shapes"), self._where("result_shapes")).items()
        }
        self._check_shapes(shapes)

        prefix = str(defaults.get("prefix", "swe_"))
        functions: Dict[str, FunctionConfig] = {}
        for native_name, entry in _require_mapping(doc.get("functions"), self._where("functions")).items():
            functions[native_name] = self._load_function(native_name, entry, shapes, default_return, prefix)

        table = FunctionTable(
            functions,
            shapes,
            prefix=prefix,
            default_return=default_return,
            error_message=str(defaults.get("error_message", "Swiss Ephemeris error")),
            symbolic_code_params=defaults.get("symbolic_code_params") or [],
        )
        self._check_shape_usage(table)
        return table

    def _load_output(self, where: str, entry: Any) -> OutputType:
        entry = _require_mapping(entry, where)
        _check_keys(entry, OUTPUT_KEYS, where)
        kind = entry.get("type")
        if kind not in OUTPUT_KINDS:
            raise ConfigError(f"{where}: unknown output type {kind!r}")
        if entry.get("name") is not None and not _is_method_name(str(entry["name"])):
            raise ConfigError(f"{where}.name: invalid field name {entry['name']!r}")
        out = OutputType(kind=kind, name=entry.get("name"))
        if out.is_array:
            out.count = _positive_int(entry.get("count"), f"{where}.count")
        if kind in (STRING, ERROR):
            out.size = _positive_int(entry.get("size"), f"{where}.size")
        return out

    def _load_function(self, native_name: str, entry: Any, shapes: Dict[str, ResultShape],
                       default_return: str, prefix: str) -> FunctionConfig:
        where = self._where("functions", native_name)
        entry = _require_mapping(entry, where)
        _check_keys(entry, FUNCTION_KEYS, where)

        outputs = {
            param: self._load_output(f"{where}.outputs.{param}", out)
            for param, out in _require_mapping(entry.get("outputs"), f"{where}.outputs").items()
        }
        if sum(1 for out in outputs.values() if out.is_error) > 1:
            raise ConfigError(f"{where}: more than one error buffer")

        input_strings = entry.get("input_strings") or []
        if not isinstance(input_strings, list) or not all(isinstance(s, str) for s in input_strings):
            raise ConfigError(f"{where}.input_strings: expected a list of parameter names")

        return_mode = entry.get("returns", default_return)
        if return_mode not in RETURN_MODES:
            raise ConfigError(f"{where}.returns: unknown return mode {return_mode!r}")

        result_shape = entry.get("result")
        if result_shape is not None and result_shape not in shapes:
            raise ConfigError(f"{where}.result: unknown result shape '{result_shape}'")

        friendly = entry.get("name") or (native_name[len(prefix):] if native_name.startswith(prefix) else native_name)
        return FunctionConfig(
            friendly_name=friendly,
            description=entry.get("description"),
            outputs=outputs,
            input_strings=list(input_strings),
            return_mode=return_mode,
            result_shape=result_shape,
            skip=bool(entry.get("skip", False)),
        )

    def _load_shape(self, name: str, entry: Any) -> ResultShape:
        where = self._where("result_shapes", name)
        entry = _require_mapping(entry, where)
        _check_keys(entry, SHAPE_KEYS, where)
        if not name.isidentifier():
            raise ConfigError(f"{where}: shape name is not an identifier")

        fields: List[ShapeField] = []
        for i, raw_field in enumerate(entry.get("fields") or []):
            fwhere = f"{where}.fields[{i}]"
            raw_field = _require_mapping(raw_field, fwhere)
            _check_keys(raw_field, FIELD_KEYS, fwhere)
            field_name = raw_field.get("name")
            if not isinstance(field_name, str) or not _is_method_name(field_name):
                raise ConfigError(f"{fwhere}: invalid field name {field_name!r}")
            selectors = [k for k in ("index", "start", "shape") if raw_field.get(k) is not None]
            if len(selectors) > 1:
                raise ConfigError(f"{fwhere}: use only one of index, start, shape")
            output = raw_field.get("output", 0)
            if not isinstance(output, int) or output < 0:
                raise ConfigError(f"{fwhere}.output: expected a non-negative integer")
            fields.append(ShapeField(
                name=field_name,
                output=output,
                index=raw_field.get("index"),
                start=raw_field.get("start"),
                shape=raw_field.get("shape"),
                optional=bool(raw_field.get("optional", False)),
                annotation=raw_field.get("type"),
            ))
        return ResultShape(name=name, fields=fields, doc=entry.get("doc"), base=entry.get("base"))

    def _check_shapes(self, shapes: Dict[str, ResultShape]):
        for shape in shapes.values():
            where = self._where("result_shapes", shape.name)
            # walk the base chain so inheritance cannot loop
            chain = [shape.name]
            base = shape.base
            while base is not None:
                if base not in shapes:
                    raise ConfigError(f"{where}.base: unknown result shape '{base}'")
                if base in chain:
                    raise ConfigError(f"{where}.base: inheritance cycle through '{base}'")
                chain.append(base)
                base = shapes[base].base
            for f in shape.fields:
                if f.shape is not None and f.shape not in shapes:
                    raise ConfigError(f"{where}.{f.name}: unknown result shape '{f.shape}'")

    def _check_shape_usage(self, table: FunctionTable):
        """Every field of a routine's result shape must point at an output that can supply it."""
        for native_name, config in table.functions.items():
            if config.result_shape is None or config.skip:
                continue
            where = self._where("functions", native_name, "result")
            values = [config.outputs[name] for name in config.value_outputs]
            for f in table.shape_fields(config.result_shape):
                if f.output >= len(values):
                    if f.optional:
                        continue
                    raise ConfigError(f"{where}: field '{f.name}' reads output {f.output}, "
                                      f"but the routine has {len(values)}")
                out = values[f.output]
                if (f.index is not None or f.start is not None or f.shape is not None) and not out.is_array:
                    raise ConfigError(f"{where}: field '{f.name}' slices a non-array output")
                if f.index is not None and not 0 <= f.index < out.count:
                    raise ConfigError(f"{where}: field '{f.name}' index {f.index} is out of range")


def parse_function_table(text: str, source: str = "<config>") -> FunctionTable:
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"{source}: {e}") from e
    return FunctionTableLoader(source).load(doc)


def load_function_table(path: Optional[str] = None) -> FunctionTable:
    path = path or DEFAULT_CONFIG_PATH
    with open(path, "r", encoding="utf-8") as f:
        return parse_function_table(f.read(), source=path)
