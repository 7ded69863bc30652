"""
config.py - Reader and writer options

Options are plain dataclasses. They can also be loaded from a YAML
document with optional `reader`, `writer` and `catalog` sections:

    reader:
      strict_symbols: true
      lob_views: false
    writer:
      pretty: true
      indent: 4
      symbol_table_policy: append
    catalog:
      - name: com.example.sensors
        version: 1
        symbols: [temperature, humidity]

Usage:
    reader_options, writer_options = load_options('ionstream.yaml')
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional, Tuple

import yaml

from .symbols import Catalog

SYMBOL_TABLE_POLICIES = ('append', 'reset')


@dataclass
class ReaderOptions:
    """
    catalog:        shared symbol tables available to imports
    strict_symbols: raise UnresolvedSymbol for ids beyond the table instead
                    of surfacing them as SymbolToken(None, sid)
    lob_views:      return blob/clob payloads from binary input as memoryview
                    slices of the input buffer, released when the cursor moves
    """
    catalog: Optional[Catalog] = None
    strict_symbols: bool = False
    lob_views: bool = False


@dataclass
class WriterOptions:
    pretty: bool = False
    indent: int = 2
    symbol_table_policy: str = 'append'
    text_version_marker: bool = False
    compact_floats: bool = True

    def __post_init__(self):
        if self.symbol_table_policy not in SYMBOL_TABLE_POLICIES:
            raise ValueError(f"Unknown symbol table policy: {self.symbol_table_policy!r} "
                             f"(expected one of {', '.join(SYMBOL_TABLE_POLICIES)})")
        if self.indent < 0:
            raise ValueError(f"Indent must be >= 0, got {self.indent}")


def load_yaml(source) -> Any:
    """Parse YAML from a path, an open stream or a YAML string."""
    if isinstance(source, Path):
        return yaml.safe_load(source.read_text())
    if isinstance(source, str):
        if '\n' not in source and source.endswith(('.yaml', '.yml')):
            return yaml.safe_load(Path(source).read_text())
        return yaml.safe_load(source)
    return yaml.safe_load(source)


def _options_from(cls, section: Optional[dict], name: str):
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' section must be a mapping")
    known = {f.name for f in fields(cls)} - {'catalog'}
    unknown = set(section) - known
    if unknown:
        raise ValueError(f"Unknown {name} options: {sorted(unknown)}")
    return dict(section)


def load_options(source) -> Tuple[ReaderOptions, WriterOptions]:
    """Load reader and writer options from YAML."""
    data = load_yaml(source) or {}
    if not isinstance(data, dict):
        raise ValueError("Options document must be a mapping")
    unknown = set(data) - {'reader', 'writer', 'catalog'}
    if unknown:
        raise ValueError(f"Unknown option sections: {sorted(unknown)}")

    catalog = None
    if data.get('catalog') is not None:
        entries = data['catalog']
        if isinstance(entries, dict):
            entries = entries.get('tables', [])
        catalog = Catalog.from_dicts(entries)

    reader = ReaderOptions(catalog=catalog, **_options_from(ReaderOptions, data.get('reader'), 'reader'))
    writer = WriterOptions(**_options_from(WriterOptions, data.get('writer'), 'writer'))
    return reader, writer
