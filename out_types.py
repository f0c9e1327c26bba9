from dataclasses import dataclass, field
from typing import Dict, List, Optional


class BindgenError(RuntimeError):
    """Base class for failures that abort a generator run."""


class DeclarationError(BindgenError):
    """A header declaration did not match the accepted dialect (strict mode only)."""


class ConfigError(BindgenError):
    """The routine configuration table is inconsistent with itself or the header."""


class DependencyCycleError(BindgenError):
    """Constants reference each other in a cycle and the cycle policy is 'error'."""


@dataclass
class Constant:
    name: str
    value: str
    dependencies: List[str] = field(default_factory=list)
    category: str = "OTHER"
    comment: Optional[str] = None

    def __hash__(self):
        return hash(self.name)


@dataclass
class Parameter:
    name: str
    ctype: str
    is_pointer: bool = False


@dataclass
class Function:
    name: str
    return_type: str
    parameters: List[Parameter]
    category: str = "OTHER"

    def parameter(self, name: str) -> Optional[Parameter]:
        for p in self.parameters:
            if p.name == name:
                return p
        return None


# Output buffer kinds understood by the wrapper synthesizer
FLOAT64 = "float64"
INT32 = "int32"
FLOAT64_ARRAY = "float64[]"
INT32_ARRAY = "int32[]"
STRING = "string"
ERROR = "error"

OUTPUT_KINDS = (FLOAT64, INT32, FLOAT64_ARRAY, INT32_ARRAY, STRING, ERROR)

ELEMENT_SIZES = {
    FLOAT64: 8,
    INT32: 4,
    FLOAT64_ARRAY: 8,
    INT32_ARRAY: 4,
}


@dataclass
class OutputType:
    kind: str
    count: int = 1
    size: int = 0
    name: Optional[str] = None

    @property
    def is_array(self) -> bool:
        return self.kind in (FLOAT64_ARRAY, INT32_ARRAY)

    @property
    def is_error(self) -> bool:
        return self.kind == ERROR

    def byte_size(self) -> int:
        """Number of bytes to allocate for this buffer."""
        if self.kind in (STRING, ERROR):
            return self.size
        if self.is_array:
            return self.count * ELEMENT_SIZES[self.kind]
        return ELEMENT_SIZES[self.kind]


# Return-value interpretation modes
RETURN_VOID = "void"
RETURN_NUMBER = "number"
RETURN_CHECK_ERROR = "check-error"
RETURN_CHECK_NEGATIVE = "check-negative"

RETURN_MODES = (RETURN_VOID, RETURN_NUMBER, RETURN_CHECK_ERROR, RETURN_CHECK_NEGATIVE)
CHECKED_RETURN_MODES = (RETURN_CHECK_ERROR, RETURN_CHECK_NEGATIVE)


@dataclass
class FunctionConfig:
    friendly_name: str
    description: Optional[str] = None
    outputs: Dict[str, OutputType] = field(default_factory=dict)
    input_strings: List[str] = field(default_factory=list)
    return_mode: str = RETURN_NUMBER
    result_shape: Optional[str] = None
    skip: bool = False

    @property
    def value_outputs(self) -> List[str]:
        """Names of the non-error outputs, in configuration order."""
        return [name for name, out in self.outputs.items() if not out.is_error]

    @property
    def error_output(self) -> Optional[str]:
        for name, out in self.outputs.items():
            if out.is_error:
                return name
        return None


@dataclass
class ShapeField:
    name: str
    output: int
    index: Optional[int] = None
    start: Optional[int] = None
    shape: Optional[str] = None
    optional: bool = False
    annotation: Optional[str] = None


@dataclass
class ResultShape:
    name: str
    fields: List[ShapeField] = field(default_factory=list)
    doc: Optional[str] = None
    base: Optional[str] = None
