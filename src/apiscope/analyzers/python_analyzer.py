"""Line-oriented heuristic analyzer for Python sources."""

import re
from typing import Dict, List, Optional

from .base import LanguageAnalyzer
from ..snapshot import (
    ClassMember, ClassShape, ExportRecord, ExportType, FunctionShape,
    FunctionSignature, ImportRecord, Parameter, Symbol, SymbolKind, SymbolSnapshot
)

FUNCTION_PATTERN = re.compile(r'^(\s*)(?:async\s+)?def\s+(\w+)\s*\(([^)]*)\)\s*(->\s*[\w\[\],\s\.]+)?:')
CLASS_PATTERN = re.compile(r'^(\s*)class\s+(\w+)\s*(\([^)]*\))?:')
IMPORT_PATTERN = re.compile(r'^import\s+(\w+)')
FROM_IMPORT_PATTERN = re.compile(r'^from\s+([\w.]+)\s+import\s+(.+)$')
PARAMETER_PATTERN = re.compile(r'^(\*{0,2})(\w+)(?::\s*([^=]+))?(?:\s*=\s*(.+))?$')
ALL_PATTERN = re.compile(r'^__all__\s*=\s*[\[(]([^\])]*)[\])]', re.MULTILINE)


def split_parameters(params: str) -> List[str]:
    """Split a parameter list at top-level commas."""
    parts = []
    depth = 0
    current = []
    for char in params:
        if char in '[({':
            depth += 1
        elif char in '])}':
            depth -= 1
        if char == ',' and depth == 0:
            parts.append(''.join(current).strip())
            current = []
        else:
            current.append(char)
    if ''.join(current).strip():
        parts.append(''.join(current).strip())
    return parts


class PythonAnalyzer(LanguageAnalyzer):
    """Recognizes functions and classes by declaration lines and nests them by indentation."""

    language = "python"
    extensions = ('.py',)
    skip_dirs = ('__pycache__', '.git', 'venv', 'env', '.venv')

    def analyze(self, file_path: str, content: str) -> SymbolSnapshot:
        snapshot = SymbolSnapshot(file_path=file_path, language=self.language)
        lines = content.split('\n')

        classes: Dict[str, Symbol] = {}
        class_methods: Dict[str, List[ClassMember]] = {}
        current_class = None  # (name, indent)
        method_indent: Optional[int] = None

        for i, line in enumerate(lines):
            line_num = i + 1

            import_match = IMPORT_PATTERN.match(line)
            if import_match:
                snapshot.imports.append(ImportRecord(module=import_match.group(1), line=line_num,
                                                     namespace_name=import_match.group(1)))
                snapshot.modules.append(import_match.group(1))

            from_match = FROM_IMPORT_PATTERN.match(line)
            if from_match:
                record = ImportRecord(module=from_match.group(1), line=line_num)
                for name in from_match.group(2).strip('()').split(','):
                    pieces = name.strip().split(' as ')
                    if pieces[0]:
                        record.names[pieces[-1].strip()] = pieces[0].strip()
                snapshot.imports.append(record)
                snapshot.modules.append(from_match.group(1))

            class_match = CLASS_PATTERN.match(line)
            if class_match:
                indent = len(class_match.group(1))
                name = class_match.group(2)
                bases = (class_match.group(3) or '').strip('()')
                classes[name] = Symbol(
                    name=name,
                    kind=SymbolKind.CLASS,
                    file_path=file_path,
                    line=line_num,
                    column=indent + 1,
                    is_exported=indent == 0,
                    signature=f"class {name}({bases})" if bases else f"class {name}"
                )
                class_methods[name] = []
                current_class = (name, indent)
                method_indent = None

            func_match = FUNCTION_PATTERN.match(line)
            if func_match:
                indent = len(func_match.group(1))
                func_name = func_match.group(2)
                params = func_match.group(3) or ''
                return_type = func_match.group(4).replace('->', '').strip() if func_match.group(4) else 'Any'
                signature = FunctionSignature(parameters=self._parse_parameters(params),
                                              return_type=return_type)

                if current_class and indent > current_class[1]:
                    if method_indent is None:
                        method_indent = indent
                    if indent == method_indent:
                        class_methods[current_class[0]].append(ClassMember(
                            name=func_name,
                            kind='constructor' if func_name == '__init__' else 'method',
                            visibility=self._visibility(func_name),
                            static=self._is_static(lines, i),
                            signature=signature
                        ))
                else:
                    snapshot.functions.append(Symbol(
                        name=func_name,
                        kind=SymbolKind.FUNCTION,
                        file_path=file_path,
                        line=line_num,
                        column=indent + 1,
                        is_exported=indent == 0,
                        signature=f"{func_name}({params})",
                        return_type=return_type,
                        shape=FunctionShape(name=func_name, overloads=[signature]),
                        metadata={'is_async': 'async def' in line}
                    ))

            # Leave the class once the next non-blank line dedents to its level
            if current_class and i + 1 < len(lines):
                next_line = lines[i + 1]
                if next_line.strip():
                    next_indent = len(next_line) - len(next_line.lstrip())
                    if next_indent <= current_class[1]:
                        current_class = None
                        method_indent = None

        for name, symbol in classes.items():
            symbol.shape = ClassShape(name=name, members=class_methods[name])
            snapshot.classes.append(symbol)

        snapshot.exports = self._exports(content, snapshot)
        return snapshot.deduplicate()

    def _parse_parameters(self, params: str) -> List[Parameter]:
        parameters = []
        for param in split_parameters(params):
            if not param or param in ('self', 'cls', '*', '/'):
                continue
            match = PARAMETER_PATTERN.match(param)
            if not match:
                continue
            stars, name, annotation, default = match.groups()
            parameters.append(Parameter(
                name=name,
                type=annotation.strip() if annotation else 'Any',
                optional=default is not None or bool(stars),
                rest=bool(stars),
                default_value=default.strip() if default else None
            ))
        return parameters

    @staticmethod
    def _visibility(name: str) -> str:
        if name.startswith('_') and not (name.startswith('__') and name.endswith('__')):
            return 'private'
        return 'public'

    @staticmethod
    def _is_static(lines: List[str], index: int) -> bool:
        return index > 0 and lines[index - 1].strip() in ('@staticmethod', '@classmethod')

    def _exports(self, content: str, snapshot: SymbolSnapshot) -> List[ExportRecord]:
        top_level = [s for s in snapshot.functions + snapshot.classes if s.is_exported]
        declared = ALL_PATTERN.search(content)
        if declared:
            names = set(re.findall(r'[\'"](\w+)[\'"]', declared.group(1)))
            top_level = [s for s in top_level if s.name in names]
        else:
            top_level = [s for s in top_level if not s.name.startswith('_')]
        return [
            ExportRecord(name=s.name, export_type=ExportType.NAMED, kind=s.kind.value, line=s.line)
            for s in sorted(top_level, key=lambda s: s.line)
        ]

    def reference_patterns(self, symbol_name: str) -> List["re.Pattern"]:
        name = re.escape(symbol_name)
        return [
            re.compile(rf'^import\s+{name}\b', re.MULTILINE),
            re.compile(rf'^from\s+.*import\s+.*\b{name}\b', re.MULTILINE),
            re.compile(rf'\b{name}\s*\('),
        ]
