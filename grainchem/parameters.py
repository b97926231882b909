"""Block-structured parameter store.

Parameters are read from a text file resembling a FORTRAN namelist::

    <chemistry>              # block name on a line by itself
    tolerance = 1e-4         # whitespace around '=' is optional
    solver    = kaps_rentrop

    <grains>
    max_charge = 2
    <par_end>                # optional end marker

Parameters can be overridden from the command line as ``block/name=value``.
A store is an ordinary object: build it once at startup and pass it to
whatever needs configuration.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .errors import ConfigurationError, ParameterError

logger = logging.getLogger(__name__)

END_MARKER = "<par_end>"
DEFAULT_COMMENT = "Default Value"
_MISSING = object()


@dataclass
class Parameter:
    """A single ``name = value # comment`` entry."""

    value: str
    comment: Optional[str] = None


class ParameterStore:
    """Ordered mapping of block names to ordered mappings of parameters."""

    def __init__(self):
        self.blocks: dict[str, dict[str, Parameter]] = {}

    @classmethod
    def from_file(cls, filepath: Union[str, Path]) -> "ParameterStore":
        """Read a parameter file."""
        store = cls()
        store.read(filepath)
        return store

    @classmethod
    def from_string(cls, text: str) -> "ParameterStore":
        store = cls()
        store.parse(text)
        return store

    def read(self, filepath: Union[str, Path]):
        path = Path(filepath)
        if not path.exists():
            raise ConfigurationError(f"Parameter file {path} could not be opened")
        logger.debug("Opening %s for parameter access", path)
        with open(path, "r") as f:
            self.parse(f.read())

    def parse(self, text: str):
        """Add the blocks and parameters of ``text`` to this store."""
        block = None
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith(END_MARKER):
                break
            if line.startswith("<"):
                end = line.find(">")
                if end < 0:
                    raise ConfigurationError(
                        f"Blockname {line[1:]} does not appear terminated"
                    )
                block = line[1:end].strip()
                self.blocks.setdefault(block, {})
                continue
            if block is None:
                raise ConfigurationError(f"(no block name) while parsing line {line!r}")
            self._add_line(block, line)

    def _add_line(self, block: str, line: str):
        body, hash_, comment = line.partition("#")
        name, equal, value = body.partition("=")
        if not equal:
            raise ConfigurationError(f"No '=' found in line {line!r}")
        self.set(block, name.strip(), value.strip(), comment.strip() or None)

    def apply_cmdline(self, args: list[str]) -> list[str]:
        """Override existing parameters with ``block/name=value`` arguments.

        Arguments not in that form are ignored and returned.
        """
        unused = []
        for arg in args:
            block, slash, rest = arg.partition("/")
            name, equal, value = rest.partition("=")
            if not slash or not equal:
                unused.append(arg)
                continue
            logger.debug("Command line override %s/%s=%s", block, name, value)
            if block not in self.blocks:
                raise ParameterError(f"Block {block!r} not found")
            if name not in self.blocks[block]:
                raise ParameterError(f"Par {name!r} not found in Block {block!r}")
            self.blocks[block][name].value = value
        return unused

    def exists(self, block: str, name: str) -> bool:
        return name in self.blocks.get(block, {})

    def _lookup(self, block: str, name: str) -> str:
        if block not in self.blocks:
            raise ParameterError(f"Block {block!r} not found")
        if name not in self.blocks[block]:
            raise ParameterError(f"Par {name!r} not found in Block {block!r}")
        return self.blocks[block][name].value

    def _get(self, block, name, default, convert, fmt):
        if default is not _MISSING and not self.exists(block, name):
            self.set(block, name, fmt(default), DEFAULT_COMMENT)
            return default
        value = self._lookup(block, name)
        try:
            return convert(value)
        except ValueError:
            raise ConfigurationError(
                f"Par {name!r} in Block {block!r} has invalid value {value!r}"
            ) from None

    def get_str(self, block: str, name: str, default=_MISSING) -> str:
        return self._get(block, name, default, str, str)

    def get_int(self, block: str, name: str, default=_MISSING) -> int:
        return self._get(block, name, default, int, lambda v: f"{v:d}")

    def get_float(self, block: str, name: str, default=_MISSING) -> float:
        return self._get(block, name, default, float, lambda v: f"{v:.15e}")

    def set(self, block: str, name: str, value, comment: Optional[str] = None):
        """Set or add a parameter. An existing comment is kept unless a new one is given."""
        if isinstance(value, float):
            value = f"{value:.15e}"
        value = str(value)
        params = self.blocks.setdefault(block, {})
        if name in params:
            params[name].value = value
            if comment is not None:
                params[name].comment = comment
        else:
            params[name] = Parameter(value, comment)

    def block(self, block: str) -> dict[str, str]:
        """Name to value mapping of one block."""
        if block not in self.blocks:
            raise ParameterError(f"Block {block!r} not found")
        return {name: par.value for name, par in self.blocks[block].items()}

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {block: self.block(block) for block in self.blocks}

    def dump(self, mode: str = "pretty") -> str:
        """Render the store.

        Modes
        -----
        pretty : column aligned ``<block>`` listing with comments
        flat   : ``block/name = value`` lines
        par    : reloadable parameter file ending in ``<par_end>``
        """
        if mode not in ("pretty", "flat", "par"):
            raise ValueError(f"Unknown dump mode: {mode}")

        lines = []
        if mode != "par":
            lines += ["# --------------------- PAR_DUMP -----------------------", ""]

        for block, params in self.blocks.items():
            if mode == "flat":
                lines.append(f"{block}::")
                lines += [f" {block}/{name} = {par.value}" for name, par in params.items()]
            else:
                lines.append(f"<{block}>")
                name_len = max((len(name) for name in params), default=0)
                value_len = max((len(par.value) for par in params.values()), default=0)
                for name, par in params.items():
                    line = f"{name:<{name_len}} = {par.value:<{value_len}}"
                    if par.comment is not None:
                        line += f" # {par.comment}"
                    lines.append(line.rstrip())
            lines.append("")

        if mode == "par":
            lines.append(END_MARKER)
        else:
            lines.append("# --------------------- PAR_DUMP -------------------------")
        return "\n".join(lines) + "\n"

    def write(self, filepath: Union[str, Path], mode: str = "par"):
        with open(filepath, "w") as f:
            f.write(self.dump(mode))
