"""
Probes - compilers, script interpreters and Lua.
"""

from envseek.probes.base import ProbeContext, ProbeResult
from envseek.probes.compiler import CompilerProbe
from envseek.probes.interpreter import InterpreterProbe
from envseek.probes.lua import LuaProbe

__all__ = [
    "ProbeContext",
    "ProbeResult",
    "CompilerProbe",
    "InterpreterProbe",
    "LuaProbe",
]
