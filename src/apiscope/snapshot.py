"""Symbol and API snapshot data model shared by every language analyzer."""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class SymbolKind(Enum):
    """Kinds of declared symbols."""
    FUNCTION = "function"
    CLASS = "class"
    INTERFACE = "interface"
    TYPE = "type"
    ENUM = "enum"
    VARIABLE = "variable"
    METHOD = "method"


class ExportType(Enum):
    """How a name is exported from a module."""
    NAMED = "named"
    DEFAULT = "default"
    NAMESPACE = "namespace"
    RE_EXPORT = "re-export"


@dataclass
class Parameter:
    """A single function or method parameter."""
    name: str
    type: str = "any"
    optional: bool = False
    rest: bool = False
    default_value: Optional[str] = None


@dataclass
class FunctionSignature:
    """One callable signature (an overload or the implementation)."""
    parameters: List[Parameter] = field(default_factory=list)
    return_type: str = "void"
    type_parameters: List[str] = field(default_factory=list)

    def render(self) -> str:
        params = []
        for param in self.parameters:
            prefix = "..." if param.rest else ""
            marker = "?" if param.optional and not param.rest else ""
            params.append(f"{prefix}{param.name}{marker}: {param.type}")
        type_params = f"<{', '.join(self.type_parameters)}>" if self.type_parameters else ""
        return f"{type_params}({', '.join(params)}) => {self.return_type}"


@dataclass
class FunctionShape:
    """API shape of an exported function."""
    name: str
    overloads: List[FunctionSignature] = field(default_factory=list)
    type_parameters: List[str] = field(default_factory=list)
    kind: str = "function"


@dataclass
class ClassMember:
    """A public or protected class member."""
    name: str
    kind: str  # method, property, get, set, constructor
    optional: bool = False
    readonly: bool = False
    visibility: str = "public"
    static: bool = False
    signature: Optional[FunctionSignature] = None
    type: Optional[str] = None


@dataclass
class ClassShape:
    """API shape of an exported class."""
    name: str
    members: List[ClassMember] = field(default_factory=list)
    extends: Optional[str] = None
    implements: List[str] = field(default_factory=list)
    kind: str = "class"

    @property
    def constructor(self) -> Optional[ClassMember]:
        for member in self.members:
            if member.kind == "constructor":
                return member
        return None


@dataclass
class TypeProperty:
    """A property of an interface or object type alias."""
    name: str
    type: str = "any"
    optional: bool = False
    readonly: bool = False


@dataclass
class TypeShape:
    """API shape of an interface or type alias."""
    name: str
    kind: str = "type"  # type or interface
    properties: List[TypeProperty] = field(default_factory=list)
    index_signatures: List[str] = field(default_factory=list)
    type_text: Optional[str] = None
    extends: List[str] = field(default_factory=list)


@dataclass
class EnumMember:
    name: str
    value: Optional[str] = None


@dataclass
class EnumShape:
    """API shape of an enum."""
    name: str
    members: List[EnumMember] = field(default_factory=list)
    const: bool = False
    kind: str = "enum"


@dataclass
class VariableShape:
    """API shape of an exported variable or constant."""
    name: str
    kind: str = "variable"  # variable or const
    type: Optional[str] = None
    readonly: bool = False


@dataclass
class NamespaceShape:
    """API shape of `export * as ns` style namespace exports."""
    name: str
    exports: List[str] = field(default_factory=list)
    kind: str = "namespace"


@dataclass
class SurfaceShape:
    """Export-only shape used when no type information is available."""
    name: str
    kind: str = "variable"


ApiShape = Union[FunctionShape, ClassShape, TypeShape, EnumShape, VariableShape, NamespaceShape, SurfaceShape]


@dataclass
class Symbol:
    """A declared symbol in a single file."""
    name: str
    kind: SymbolKind
    file_path: str
    line: int
    column: int = 1
    is_exported: bool = False
    signature: str = ""
    return_type: Optional[str] = None
    shape: Optional[ApiShape] = None
    qualified_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.qualified_name is None:
            self.qualified_name = self.name


@dataclass
class ExportRecord:
    """A single export statement entry of a module."""
    name: str
    export_type: ExportType = ExportType.NAMED
    kind: str = "unknown"
    line: int = 0
    source_module: Optional[str] = None
    source_name: Optional[str] = None
    is_type_only: bool = False

    @property
    def key(self) -> str:
        return f"{self.export_type.value}:{self.name}:{self.source_module or ''}"


@dataclass
class ImportRecord:
    """A single import statement of a module."""
    module: str
    line: int
    names: Dict[str, str] = field(default_factory=dict)  # local -> imported
    default_name: Optional[str] = None
    namespace_name: Optional[str] = None
    is_type_only: bool = False
    is_reexport: bool = False
    is_require: bool = False


@dataclass
class PackageSnapshot:
    """The parts of package.json that shape a package's public surface."""
    type: str = "missing"  # module, commonjs or missing
    exports: Any = None


@dataclass
class SymbolSnapshot:
    """Per-file aggregate of declared symbols and exports."""
    file_path: str
    language: str
    functions: List[Symbol] = field(default_factory=list)
    classes: List[Symbol] = field(default_factory=list)
    interfaces: List[Symbol] = field(default_factory=list)
    type_aliases: List[Symbol] = field(default_factory=list)
    enums: List[Symbol] = field(default_factory=list)
    variables: List[Symbol] = field(default_factory=list)
    exports: List[ExportRecord] = field(default_factory=list)
    imports: List[ImportRecord] = field(default_factory=list)
    modules: List[str] = field(default_factory=list)
    module_system: str = "unknown"
    package_json: Optional[PackageSnapshot] = None

    def all_symbols(self) -> List[Symbol]:
        return (self.functions + self.classes + self.interfaces
                + self.type_aliases + self.enums + self.variables)

    def find_symbol(self, name: str) -> Optional[Symbol]:
        for symbol in self.all_symbols():
            if symbol.name == name:
                return symbol
        return None

    def deduplicate(self) -> "SymbolSnapshot":
        """Drop repeated (kind, name) pairs, keeping the first declaration."""
        seen = set()
        for attr in ("functions", "classes", "interfaces", "type_aliases", "enums", "variables"):
            unique = []
            for symbol in getattr(self, attr):
                key = (symbol.kind, symbol.qualified_name)
                if key in seen:
                    continue
                seen.add(key)
                unique.append(symbol)
            setattr(self, attr, unique)

        seen_exports = set()
        unique_exports = []
        for record in self.exports:
            if record.key in seen_exports:
                continue
            seen_exports.add(record.key)
            unique_exports.append(record)
        self.exports = unique_exports
        return self


@dataclass
class ApiSnapshot:
    """Entrypoint-scoped snapshot keyed by export identity."""
    entrypoint_path: str
    exports: Dict[str, ApiShape] = field(default_factory=dict)
    partial: bool = False
    failed_shapes: int = 0
    failed_shape_names: List[str] = field(default_factory=list)
    module_system: str = "unknown"
    analysis_mode: str = "TypeScript"

    def record_failure(self, name: str):
        self.failed_shapes += 1
        self.failed_shape_names.append(name)
        self.partial = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entrypoint_path": self.entrypoint_path,
            "exports": {identity: asdict(shape) for identity, shape in sorted(self.exports.items())},
            "partial": self.partial,
            "failed_shapes": self.failed_shapes,
            "failed_shape_names": sorted(self.failed_shape_names),
            "module_system": self.module_system,
            "analysis_mode": self.analysis_mode,
        }


@dataclass
class ChangedElements:
    """Names of functions and classes that differ between two versions of a file."""
    changed_functions: List[str] = field(default_factory=list)
    changed_classes: List[str] = field(default_factory=list)


def make_identity(name: str, export_type: str, file_path: str, line: int) -> str:
    """Build the stable diff key of an exported symbol."""
    return f"{name}|{export_type}|{file_path}|{line}"


def split_identity(identity: str) -> Dict[str, Any]:
    name, export_type, file_path, line = identity.rsplit("|", 3)
    return {"name": name, "export_type": export_type, "file_path": file_path, "line": int(line)}
