import struct
from typing import Any, Callable, List, Optional, Tuple, TypeVar

T = TypeVar("T")

ERROR_BUFFER_SIZE = 256
STRING_SCAN_CHUNK = 256


class SwissEphError(RuntimeError):
    """A checked native routine reported failure (negative return code)."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class MemoryHelpers:
    """
    Reads and writes values in the linear memory of a loaded raw module.

    `raw` needs a `memory` attribute holding a writable bytes-like buffer
    (bytearray, memoryview, mmap) plus `malloc(size)` and `free(ptr)`.
    All values are little-endian. The buffer is looked up on every access
    since the native side may grow memory between calls.
    """

    def __init__(self, raw: Any):
        self.raw = raw

    @property
    def _view(self) -> memoryview:
        return memoryview(self.raw.memory)

    def get_int32(self, ptr: int) -> int:
        return struct.unpack_from("<i", self._view, ptr)[0]

    def get_float64(self, ptr: int) -> float:
        return struct.unpack_from("<d", self._view, ptr)[0]

    def set_float64(self, ptr: int, value: float):
        struct.pack_into("<d", self._view, ptr, value)

    def get_float64_array(self, ptr: int, count: int) -> List[float]:
        return list(struct.unpack_from(f"<{count}d", self._view, ptr))

    def get_int32_array(self, ptr: int, count: int) -> List[int]:
        return list(struct.unpack_from(f"<{count}i", self._view, ptr))

    def get_string(self, ptr: int) -> str:
        """Read a NUL-terminated UTF-8 string, scanning for the terminator in small chunks."""
        view = self._view
        end = ptr
        while end < len(view):
            chunk = bytes(view[end:end + STRING_SCAN_CHUNK])
            nul = chunk.find(b"\x00")
            if nul != -1:
                end += nul
                break
            end += len(chunk)
        return bytes(view[ptr:end]).decode("utf-8", errors="replace")

    def clear(self, ptr: int, size: int):
        self._view[ptr:ptr + size] = bytes(size)

    def alloc_string(self, value: str) -> int:
        """Copy `value` into freshly allocated memory; the caller frees the pointer."""
        encoded = value.encode("utf-8") + b"\x00"
        ptr = self.raw.malloc(len(encoded))
        self._view[ptr:ptr + len(encoded)] = encoded
        return ptr

    def alloc_float64_array(self, count: int) -> int:
        return self.raw.malloc(count * 8)

    def alloc_int32_array(self, count: int) -> int:
        return self.raw.malloc(count * 4)

    def with_error_buffer(self, fn: Callable[[int], T], size: int = ERROR_BUFFER_SIZE) -> Tuple[T, Optional[str]]:
        """
        Call `fn` with the address of a zeroed error buffer.

        Returns the call's value and the message left in the buffer, or None
        if the routine wrote nothing. The buffer is freed on every path.
        """
        ptr = self.raw.malloc(size)
        try:
            self.clear(ptr, size)
            value = fn(ptr)
            message = self.get_string(ptr)
            return value, (message or None)
        finally:
            self.raw.free(ptr)
