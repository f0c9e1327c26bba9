import itertools
import os
import struct
import sys
import types

import pytest

from main import BindingGenerator

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")
SAMPLE_HEADER = os.path.join(DATA_DIR, "swephexp_sample.h")

_module_ids = itertools.count()


class FakeRaw:
    """
    Stand-in for a loaded Swiss Ephemeris module.

    Memory is a plain bytearray with a bump allocator; every malloc and free
    is recorded so tests can check that wrappers release what they take.
    Routines are attached per test as attributes named like the exports.
    """

    def __init__(self, size: int = 1 << 16):
        self.memory = bytearray(size)
        self._next = 8
        self.allocated = []
        self.freed = []

    def malloc(self, size: int) -> int:
        ptr = self._next
        self._next += (size + 7) // 8 * 8
        self.allocated.append(ptr)
        return ptr

    def free(self, ptr: int) -> None:
        self.freed.append(ptr)

    def write_float64s(self, ptr: int, values):
        struct.pack_into(f"<{len(values)}d", self.memory, ptr, *values)

    def write_int32(self, ptr: int, value: int):
        struct.pack_into("<i", self.memory, ptr, value)

    def write_string(self, ptr: int, text: str):
        data = text.encode("utf-8") + b"\x00"
        self.memory[ptr:ptr + len(data)] = data

    def read_string(self, ptr: int) -> str:
        end = self.memory.index(0, ptr)
        return self.memory[ptr:end].decode("utf-8")

    def balanced(self) -> bool:
        return sorted(self.allocated) == sorted(self.freed)


@pytest.fixture
def raw():
    return FakeRaw()


@pytest.fixture
def sample_header_path():
    return SAMPLE_HEADER


@pytest.fixture
def sample_header_text():
    with open(SAMPLE_HEADER, "r", encoding="utf-8") as f:
        return f.read()


@pytest.fixture
def generator(sample_header_path):
    gen = BindingGenerator()
    gen.parse_header(sample_header_path)
    return gen


@pytest.fixture
def load_generated():
    """Executes generated module text and returns it as a module object."""
    loaded = []

    def _load(text: str):
        name = f"generated_under_test_{next(_module_ids)}"
        module = types.ModuleType(name)
        sys.modules[name] = module
        loaded.append(name)
        exec(compile(text, f"<{name}>", "exec"), module.__dict__)
        return module

    yield _load
    for name in loaded:
        sys.modules.pop(name, None)


@pytest.fixture
def friendly(generator, load_generated):
    return load_generated(generator.generate_friendly())
