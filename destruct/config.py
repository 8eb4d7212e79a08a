"""
destruct.config - Compiler options

Options are a plain dataclass. The default cache reads them from the
environment so optimization and debug output can be toggled without code
changes:

- DESTRUCT_OPTIMIZE=0   skip the optimizer (flatten still runs)
- DESTRUCT_FIXPOINT=1   repeat the optimizer passes until nothing changes
- DESTRUCT_DEBUG=1      log generated matcher source at DEBUG level
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_FALSE_VALUES = {"", "0", "false", "no", "off"}


def _env_flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    value = environ.get(name)
    if value is None:
        return default
    return value.strip().lower() not in _FALSE_VALUES


@dataclass(frozen=True)
class CompilerOptions:
    """
    Attributes:
        optimize: Run the optimizer passes on the IR
        fixpoint: Repeat the passes until the IR stops changing
        debug: Log the generated source of every compiled matcher
        filename: Filename recorded in generated code objects
    """

    optimize: bool = True
    fixpoint: bool = False
    debug: bool = False
    filename: str = "<destruct>"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CompilerOptions":
        """Build options from DESTRUCT_* environment variables."""
        if environ is None:
            environ = os.environ
        return cls(
            optimize=_env_flag(environ, "DESTRUCT_OPTIMIZE", True),
            fixpoint=_env_flag(environ, "DESTRUCT_FIXPOINT", False),
            debug=_env_flag(environ, "DESTRUCT_DEBUG", False),
        )
