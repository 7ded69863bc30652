"""
context.py - Per-stream state owned by exactly one reader or writer
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from .symbols import Catalog, SymbolTable

logger = logging.getLogger(__name__)

ION_1_0 = (1, 0)
SUPPORTED_VERSIONS = (ION_1_0,)


@dataclass
class ContainerFrame:
    """One level of container nesting.

    `end` is the exclusive end of the container's payload: a byte offset
    for binary, a node index for text, unused (None) for writers. The text
    formatter counts the children written so far in `start`; the binary
    encoder collects the payload in `buffer`.
    """
    ion_type: Any
    end: Optional[int] = None
    start: int = 0
    field_name: Any = None
    annotations: Tuple = ()
    buffer: Any = None


@dataclass
class StreamContext:
    """Active symbol table, nesting stack and detected encoding of a stream.

    The symbol table is replaced wholesale on every redefinition and the
    generation counter advances, so holders of an older table can tell it
    has been superseded.
    """
    encoding: Optional[str] = None
    version: Tuple[int, int] = ION_1_0
    catalog: Optional[Catalog] = None
    symbol_table: SymbolTable = field(default_factory=SymbolTable)
    generation: int = 0
    frames: List[ContainerFrame] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return len(self.frames)

    def replace_table(self, table: SymbolTable):
        self.symbol_table = table
        self.generation += 1
        logger.debug("Symbol table generation %d: max_id=%d, %d imports",
                     self.generation, table.max_id, len(table.imports))

    def reset(self, version: Tuple[int, int] = ION_1_0):
        """Version marker: back to the system table for `version`."""
        self.version = version
        self.replace_table(SymbolTable())
