"""
symbols.py - System, shared and local symbol tables

Symbol ids are assigned by position. The system table occupies ids
1..9; imported shared tables follow in import order, each contributing
exactly `max_id` slots (padded with no-text placeholders when the table is
unknown or shorter); locally declared symbols come last.

Usage:
    from ionstream.symbols import SymbolTable, ImportDescriptor

    table = SymbolTable(imports=[ImportDescriptor('com.example', 1, 3)],
                        symbols=['x'])
    table.get_text(13)   # 'x'
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import MalformedInput, UnresolvedSymbol
from .ion_types import IonType, IonValue, SymbolToken

logger = logging.getLogger(__name__)


SYSTEM_SYMBOLS = (
    '$ion',
    '$ion_1_0',
    '$ion_symbol_table',
    'name',
    'version',
    'imports',
    'symbols',
    'max_id',
    '$ion_shared_symbol_table',
)


# =============================================================================
# Shared tables and catalogs
# =============================================================================

@dataclass(frozen=True)
class SharedSymbolTable:
    """A named, versioned, immutable list of symbols."""
    name: str
    version: int
    symbols: Tuple[Optional[str], ...] = ()

    def __post_init__(self):
        if not self.name:
            raise ValueError("Shared symbol table needs a name")
        if self.version < 1:
            raise ValueError(f"Shared symbol table version must be >= 1, got {self.version}")
        object.__setattr__(self, 'symbols', tuple(self.symbols))

    @property
    def max_id(self) -> int:
        return len(self.symbols)


SYSTEM_SYMBOL_TABLE = SharedSymbolTable('$ion', 1, SYSTEM_SYMBOLS)


@dataclass(frozen=True)
class ImportDescriptor:
    """Reference to a shared table: name, version and the slots it occupies."""
    name: str
    version: int = 1
    max_id: Optional[int] = None


class Catalog:
    """Collection of shared symbol tables available to readers and writers."""

    def __init__(self, tables: Iterable[SharedSymbolTable] = ()):
        self._tables: Dict[str, Dict[int, SharedSymbolTable]] = {}
        for table in tables:
            self.add(table)

    def add(self, table: SharedSymbolTable):
        self._tables.setdefault(table.name, {})[table.version] = table

    def get(self, name: str, version: int) -> Optional[SharedSymbolTable]:
        """Exact (name, version) lookup."""
        return self._tables.get(name, {}).get(version)

    def find(self, name: str, version: int) -> Optional[SharedSymbolTable]:
        """Exact match if present, otherwise the highest available version."""
        versions = self._tables.get(name)
        if not versions:
            return None
        if version in versions:
            return versions[version]
        return versions[max(versions)]

    def __len__(self) -> int:
        return sum(len(v) for v in self._tables.values())

    def __contains__(self, name: str) -> bool:
        return name in self._tables

    @classmethod
    def from_dicts(cls, entries: Sequence[dict]) -> 'Catalog':
        """Build from [{'name': ..., 'version': ..., 'symbols': [...]}, ...]."""
        catalog = cls()
        for entry in entries:
            if not isinstance(entry, dict) or 'name' not in entry:
                raise ValueError(f"Catalog entry needs a name: {entry!r}")
            unknown = set(entry) - {'name', 'version', 'symbols'}
            if unknown:
                raise ValueError(f"Unknown catalog entry keys: {sorted(unknown)}")
            symbols = entry.get('symbols') or []
            if not all(s is None or isinstance(s, str) for s in symbols):
                raise ValueError(f"Catalog symbols must be strings: {entry['name']}")
            catalog.add(SharedSymbolTable(entry['name'], int(entry.get('version', 1)), symbols))
        return catalog

    @classmethod
    def from_yaml(cls, source) -> 'Catalog':
        """Load tables from a YAML file path, stream or string.

        The document is either a list of tables or a mapping with a
        `tables` key; each table has `name`, `version` and `symbols`.
        """
        from .config import load_yaml
        data = load_yaml(source)
        if isinstance(data, dict):
            data = data.get('tables', [])
        return cls.from_dicts(data or [])

    @classmethod
    def from_ion(cls, data) -> 'Catalog':
        """Load every top-level `$ion_shared_symbol_table::{...}` value from Ion data."""
        from . import loads
        catalog = cls()
        for value in loads(data):
            if not value.annotations or value.annotations[0] != '$ion_shared_symbol_table':
                continue
            if value.ion_type is not IonType.STRUCT or value.is_null:
                raise MalformedInput("Shared symbol table declaration must be a struct")
            name = value.get('name')
            version = value.get('version')
            symbols = value.get('symbols')
            if name is None or name.ion_type is not IonType.STRING or not name.value:
                raise MalformedInput("Shared symbol table declaration needs a name")
            version_number = 1
            if version is not None and version.ion_type is IonType.INT and version.value:
                version_number = max(1, version.value)
            texts = []
            if symbols is not None and symbols.ion_type is IonType.LIST and not symbols.is_null:
                texts = [s.value if s.ion_type is IonType.STRING else None for s in symbols]
            catalog.add(SharedSymbolTable(name.value, version_number, texts))
        return catalog


# =============================================================================
# Local symbol table
# =============================================================================

class SymbolTable:
    """Local symbol table: system symbols, imports, then local symbols.

    Ids are 1-based. Slots with no text (import placeholders or non-string
    declarations) resolve to a SymbolToken with text None.
    """

    def __init__(self, imports: Sequence[Union[ImportDescriptor, SharedSymbolTable]] = (),
                 symbols: Iterable[Optional[str]] = (), catalog: Optional[Catalog] = None,
                 system: SharedSymbolTable = SYSTEM_SYMBOL_TABLE):
        self.system = system
        self._texts: List[Optional[str]] = list(system.symbols)
        self._ids: Dict[str, int] = {}
        self.imports: List[ImportDescriptor] = []
        for entry in imports:
            self._import(entry, catalog)
        self.imports_max_id = len(self._texts)
        for sid, text in enumerate(self._texts, start=1):
            if text is not None and text not in self._ids:
                self._ids[text] = sid
        self.add_symbols(symbols)

    def _import(self, entry, catalog: Optional[Catalog]):
        if isinstance(entry, SharedSymbolTable):
            table = entry
            descriptor = ImportDescriptor(entry.name, entry.version, entry.max_id)
        else:
            descriptor = entry
            table = catalog.find(entry.name, entry.version) if catalog is not None else None
        max_id = descriptor.max_id
        if max_id is None:
            if table is None or table.version != descriptor.version:
                raise MalformedInput(
                    f"Import of {descriptor.name!r} version {descriptor.version} has no max_id "
                    f"and no exact match in the catalog")
            max_id = table.max_id
            descriptor = ImportDescriptor(descriptor.name, descriptor.version, max_id)
        if table is None:
            logger.debug("Shared table %r v%d unavailable, reserving %d placeholder slots",
                         descriptor.name, descriptor.version, max_id)
            contribution = [None] * max_id
        else:
            contribution = list(table.symbols[:max_id])
            contribution += [None] * (max_id - len(contribution))
        self.imports.append(descriptor)
        self._texts.extend(contribution)

    # -- queries --------------------------------------------------------------

    @property
    def max_id(self) -> int:
        return len(self._texts)

    @property
    def local_symbols(self) -> Tuple[Optional[str], ...]:
        """Symbols declared locally, after system and imported slots."""
        return tuple(self._texts[self.imports_max_id:])

    def get_text(self, sid: int) -> Optional[str]:
        """Text for sid, or None for placeholders, symbol zero and unknown ids."""
        if 1 <= sid <= len(self._texts):
            return self._texts[sid - 1]
        return None

    def get_id(self, text: str) -> Optional[int]:
        """Lowest id whose text is `text`."""
        return self._ids.get(text)

    def resolve(self, sid: int) -> SymbolToken:
        """SymbolToken for sid; ids beyond max_id raise UnresolvedSymbol."""
        if sid == 0:
            return SymbolToken(None, 0)
        if not 1 <= sid <= len(self._texts):
            raise UnresolvedSymbol(sid, len(self._texts))
        return SymbolToken(self._texts[sid - 1], sid)

    def __contains__(self, text: str) -> bool:
        return text in self._ids

    def __len__(self) -> int:
        return len(self._texts)

    # -- mutation -------------------------------------------------------------

    def add_symbols(self, symbols: Iterable[Optional[str]]):
        """Append local declarations; duplicates and None still take an id."""
        for text in symbols:
            self._texts.append(text)
            if text is not None and text not in self._ids:
                self._ids[text] = len(self._texts)

    def intern(self, text: str) -> int:
        """Id for text, appending it as a new local symbol when absent."""
        sid = self._ids.get(text)
        if sid is None:
            self._texts.append(text)
            sid = len(self._texts)
            self._ids[text] = sid
        return sid

    def extended(self, symbols: Iterable[Optional[str]]) -> 'SymbolTable':
        """A new table with this table's contents plus `symbols` appended."""
        table = SymbolTable.__new__(SymbolTable)
        table.system = self.system
        table._texts = list(self._texts)
        table._ids = dict(self._ids)
        table.imports = list(self.imports)
        table.imports_max_id = self.imports_max_id
        table.add_symbols(symbols)
        return table


# =============================================================================
# Local symbol table declarations
# =============================================================================

def _field_text(value: IonValue) -> Optional[str]:
    if value.is_null or value.ion_type not in (IonType.STRING, IonType.SYMBOL):
        return None
    return value.value if value.ion_type is IonType.STRING else value.value.text


def _parse_import(entry: IonValue) -> Optional[ImportDescriptor]:
    if entry.ion_type is not IonType.STRUCT or entry.is_null:
        return None
    name = entry.get('name')
    if name is None or name.ion_type is not IonType.STRING or not name.value or name.value == '$ion':
        return None
    version = 1
    version_value = entry.get('version')
    if version_value is not None and version_value.ion_type is IonType.INT and not version_value.is_null:
        version = max(1, version_value.value)
    max_id = None
    max_id_value = entry.get('max_id')
    if max_id_value is not None and max_id_value.ion_type is IonType.INT and not max_id_value.is_null:
        if max_id_value.value >= 0:
            max_id = max_id_value.value
    return ImportDescriptor(name.value, version, max_id)


def build_local_table(current: SymbolTable, declaration: IonValue,
                      catalog: Optional[Catalog] = None) -> SymbolTable:
    """Apply a `$ion_symbol_table::{...}` struct and return the new table.

    `imports: $ion_symbol_table` appends to `current`; otherwise the result
    is system symbols, then the listed imports, then `symbols`.
    """
    imports_field = None
    symbols_field = None
    if not declaration.is_null:
        for name, value in declaration.expect_struct():
            if name == 'imports':
                if imports_field is not None:
                    raise MalformedInput("Symbol table declares 'imports' more than once")
                imports_field = value
            elif name == 'symbols':
                if symbols_field is not None:
                    raise MalformedInput("Symbol table declares 'symbols' more than once")
                symbols_field = value

    append = False
    imports: List[ImportDescriptor] = []
    if imports_field is not None and not imports_field.is_null:
        if imports_field.ion_type is IonType.SYMBOL:
            if imports_field.value != '$ion_symbol_table':
                raise MalformedInput(f"Invalid symbol table imports: {imports_field.value!r}")
            append = True
        elif imports_field.ion_type is IonType.LIST:
            for entry in imports_field.value:
                descriptor = _parse_import(entry)
                if descriptor is not None:
                    imports.append(descriptor)
        else:
            raise MalformedInput(
                f"Symbol table imports must be a list or $ion_symbol_table, "
                f"got {imports_field.ion_type.text_name}")

    symbols: List[Optional[str]] = []
    if symbols_field is not None and not symbols_field.is_null:
        if symbols_field.ion_type is not IonType.LIST:
            raise MalformedInput(
                f"Symbol table symbols must be a list, got {symbols_field.ion_type.text_name}")
        symbols = [
            entry.value if entry.ion_type is IonType.STRING and not entry.is_null else None
            for entry in symbols_field.value
        ]

    if append:
        return current.extended(symbols)
    return SymbolTable(imports, symbols, catalog, system=current.system)


def local_table_declaration(table: SymbolTable, since: Optional[int] = None) -> IonValue:
    """Declaration struct for `table`.

    With `since` given, only local symbols from that index onward are
    declared, appended to the table already in effect.
    """
    local = table.local_symbols
    fields = []
    if since is not None:
        fields.append((SymbolToken('imports'), IonValue(IonType.SYMBOL, SymbolToken('$ion_symbol_table'))))
    elif table.imports:
        entries = []
        for descriptor in table.imports:
            entries.append(IonValue(IonType.STRUCT, [
                (SymbolToken('name'), IonValue(IonType.STRING, descriptor.name)),
                (SymbolToken('version'), IonValue(IonType.INT, descriptor.version)),
                (SymbolToken('max_id'), IonValue(IonType.INT, descriptor.max_id)),
            ]))
        fields.append((SymbolToken('imports'), IonValue(IonType.LIST, entries)))
    symbols = [IonValue(IonType.STRING, text) if text is not None else IonValue(IonType.NULL)
               for text in local[since or 0:]]
    if symbols:
        fields.append((SymbolToken('symbols'), IonValue(IonType.LIST, symbols)))
    return IonValue(IonType.STRUCT, fields, (SymbolToken('$ion_symbol_table'),))
