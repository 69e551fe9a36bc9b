"""Line-oriented heuristic analyzer for Java sources."""

import re
from typing import Dict, List

from .base import LanguageAnalyzer
from .python_analyzer import split_parameters
from ..snapshot import (
    ClassMember, ClassShape, ExportRecord, ExportType, FunctionShape,
    FunctionSignature, ImportRecord, Parameter, Symbol, SymbolKind, SymbolSnapshot
)

CLASS_PATTERN = re.compile(
    r'^\s*(?:public\s+|private\s+|protected\s+)?(?:abstract\s+)?(?:final\s+)?(?:class|interface|enum)\s+(\w+)'
)
METHOD_PATTERN = re.compile(
    r'^\s*(?:public\s+|private\s+|protected\s+)?(?:static\s+)?(?:abstract\s+)?(?:final\s+)?'
    r'(\w+(?:<[^>]+>)?(?:\[\])*)\s+(\w+)\s*\(([^)]*)\)'
)
CONSTRUCTOR_PATTERN = re.compile(r'^\s*(?:public\s+|private\s+|protected\s+)?(\w+)\s*\(([^)]*)\)\s*(?:throws\s+[\w.,\s]+)?\{?\s*$')
IMPORT_PATTERN = re.compile(r'^import\s+(?:static\s+)?([\w.]+)')
PACKAGE_PATTERN = re.compile(r'^package\s+([\w.]+)')
PARAMETER_PATTERN = re.compile(r'^\s*(?:final\s+)?(\w+(?:<[^>]+>)?(?:\[\])*(?:\.\.\.)?)\s+(\w+)')

# Statements that look like `word name(...)` but are not declarations.
# Modifiers cover constructors, where the regex backtracks to `public Name(`.
NON_TYPES = {'return', 'new', 'else', 'throw', 'case', 'yield', 'await',
             'public', 'private', 'protected', 'static', 'final', 'abstract'}


class JavaAnalyzer(LanguageAnalyzer):
    """Recognizes classes and methods by declaration lines."""

    language = "java"
    extensions = ('.java',)
    skip_dirs = ('target', '.git', 'build', 'out', '.idea')

    def analyze(self, file_path: str, content: str) -> SymbolSnapshot:
        snapshot = SymbolSnapshot(file_path=file_path, language=self.language)
        lines = content.split('\n')

        classes: Dict[str, Symbol] = {}
        members: Dict[str, List[ClassMember]] = {}
        current_class = None

        for i, line in enumerate(lines):
            line_num = i + 1

            package_match = PACKAGE_PATTERN.match(line)
            if package_match:
                snapshot.modules.append(package_match.group(1))

            import_match = IMPORT_PATTERN.match(line)
            if import_match:
                module = import_match.group(1)
                snapshot.imports.append(ImportRecord(module=module, line=line_num,
                                                     names={module.rsplit('.', 1)[-1]: module.rsplit('.', 1)[-1]}))
                snapshot.modules.append(module)
                continue

            class_match = CLASS_PATTERN.match(line)
            if class_match:
                current_class = class_match.group(1)
                classes[current_class] = Symbol(
                    name=current_class,
                    kind=SymbolKind.CLASS,
                    file_path=file_path,
                    line=line_num,
                    is_exported='public' in line,
                    signature=f"class {current_class}"
                )
                members[current_class] = []
                continue

            method_match = METHOD_PATTERN.match(line)
            if method_match and method_match.group(1) not in NON_TYPES:
                return_type, method_name, params = method_match.groups()
                signature = FunctionSignature(parameters=self._parse_parameters(params),
                                              return_type=return_type)
                if current_class:
                    members[current_class].append(ClassMember(
                        name=method_name,
                        kind='method',
                        visibility=self._visibility(line),
                        static=' static ' in f" {line.strip()} ",
                        signature=signature
                    ))
                else:
                    snapshot.functions.append(Symbol(
                        name=method_name,
                        kind=SymbolKind.FUNCTION,
                        file_path=file_path,
                        line=line_num,
                        is_exported='public' in line,
                        signature=f"{method_name}({params})",
                        return_type=return_type,
                        shape=FunctionShape(name=method_name, overloads=[signature])
                    ))
                continue

            constructor_match = CONSTRUCTOR_PATTERN.match(line)
            if current_class and constructor_match and constructor_match.group(1) == current_class:
                members[current_class].append(ClassMember(
                    name='constructor',
                    kind='constructor',
                    visibility=self._visibility(line),
                    signature=FunctionSignature(
                        parameters=self._parse_parameters(constructor_match.group(2)),
                        return_type=current_class
                    )
                ))

        for name, symbol in classes.items():
            symbol.shape = ClassShape(name=name, members=members[name])
            snapshot.classes.append(symbol)
            if symbol.is_exported:
                snapshot.exports.append(ExportRecord(name=name, export_type=ExportType.NAMED,
                                                     kind='class', line=symbol.line))
        return snapshot.deduplicate()

    @staticmethod
    def _parse_parameters(params: str) -> List[Parameter]:
        parameters = []
        for param in split_parameters(params):
            match = PARAMETER_PATTERN.match(param)
            if match:
                param_type = match.group(1)
                parameters.append(Parameter(
                    name=match.group(2),
                    type=param_type.replace('...', '[]'),
                    rest=param_type.endswith('...')
                ))
        return parameters

    @staticmethod
    def _visibility(line: str) -> str:
        for visibility in ('public', 'protected', 'private'):
            if re.search(rf'\b{visibility}\b', line):
                return visibility
        return 'package'

    def reference_patterns(self, symbol_name: str) -> List["re.Pattern"]:
        name = re.escape(symbol_name)
        return [
            re.compile(rf'^import\s+.*\b{name}\b', re.MULTILINE),
            re.compile(rf'\b{name}\s*\('),
            re.compile(rf'new\s+{name}\s*\('),
        ]
