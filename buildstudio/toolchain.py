"""Target platform to toolchain resolution.

Build commands are prefixed with toolchain-specific fragments, e.g. the
MinGW cross-compiler prefix for Windows targets. Prefixes are concatenated
verbatim in front of the command with no separator or escaping, so
"gcc -o app main.c" for Windows becomes "x86_64-w64-mingw32-gcc -o app main.c".
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum


class ToolchainKind(str, Enum):
    NATIVE = "native"
    CROSS_COMPILE_WINDOWS = "cross-compile-windows"
    ANDROID_NDK = "android-ndk"
    EMSCRIPTEN = "emscripten"
    WASM_PACK = "wasm-pack"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Toolchain:
    """Resolved toolchain; prefix is only meaningful for CUSTOM."""

    kind: ToolchainKind
    prefix: str = ""

    @classmethod
    def custom(cls, prefix: str) -> Toolchain:
        return cls(ToolchainKind.CUSTOM, prefix)


NATIVE = Toolchain(ToolchainKind.NATIVE)

PLATFORM_TOOLCHAINS: dict[str, ToolchainKind] = {
    "windows": ToolchainKind.CROSS_COMPILE_WINDOWS,
    "android": ToolchainKind.ANDROID_NDK,
    "wasm": ToolchainKind.WASM_PACK,
    "webassembly": ToolchainKind.WASM_PACK,
    "emscripten": ToolchainKind.EMSCRIPTEN,
}

TOOLCHAIN_PREFIXES: dict[ToolchainKind, tuple[str, ...]] = {
    ToolchainKind.NATIVE: (),
    ToolchainKind.CROSS_COMPILE_WINDOWS: ("x86_64-w64-mingw32-",),
    ToolchainKind.ANDROID_NDK: ("$ANDROID_NDK_HOME/toolchains/llvm/prebuilt/linux-x86_64/bin/",),
    ToolchainKind.EMSCRIPTEN: ("emcc",),
    ToolchainKind.WASM_PACK: ("wasm-pack",),
}


def resolve(platform: str | None, overrides: Mapping[str, str] | None = None) -> Toolchain:
    """Map a target platform identifier to a toolchain.

    Args:
        platform: Target platform ("windows", "android", "wasm", ...). None and
            unknown identifiers resolve to the native toolchain.
        overrides: Optional platform -> prefix mapping from configuration.
            A matching override wins and yields a CUSTOM toolchain.
    """
    if platform is None:
        return NATIVE
    if overrides and platform in overrides:
        return Toolchain.custom(overrides[platform])
    kind = PLATFORM_TOOLCHAINS.get(platform)
    return Toolchain(kind) if kind is not None else NATIVE


def command_prefix(toolchain: Toolchain) -> list[str]:
    if toolchain.kind is ToolchainKind.CUSTOM:
        return [toolchain.prefix]
    return list(TOOLCHAIN_PREFIXES[toolchain.kind])


def apply_prefix(toolchain: Toolchain, command: str) -> str:
    return "".join(command_prefix(toolchain)) + command
