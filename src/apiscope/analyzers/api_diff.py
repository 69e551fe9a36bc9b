"""API Diff - structural comparison of two entrypoint API snapshots."""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..config import RENAME_TOLERANCES
from ..snapshot import (
    ApiShape, ApiSnapshot, ClassMember, ClassShape, EnumShape, FunctionShape, FunctionSignature,
    NamespaceShape, TypeShape, VariableShape, split_identity
)

logger = logging.getLogger(__name__)


class DiffType(Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    RENAMED = "renamed"


@dataclass
class ShapeChange:
    """One field-level difference between two shapes.

    ``breaking`` is False for changes callers cannot observe as breakage,
    such as a parameter becoming optional or being renamed.
    """
    element: str  # kind, overloads, type_parameters, parameter, return_type, member, property, ...
    change: str  # removed, added, required, optional, type_changed, changed, ...
    name: str = ""
    before: Optional[str] = None
    after: Optional[str] = None
    breaking: bool = True


@dataclass
class ApiDiffEntry:
    """A single added, removed, modified or renamed export."""
    diff_type: DiffType
    name: str
    kind: str
    before_identity: Optional[str] = None
    after_identity: Optional[str] = None
    before_shape: Optional[ApiShape] = None
    after_shape: Optional[ApiShape] = None
    changes: List[ShapeChange] = field(default_factory=list)

    @property
    def identity(self) -> str:
        return self.after_identity or self.before_identity or ""

    @property
    def file_path(self) -> str:
        return split_identity(self.identity)["file_path"] if self.identity else ""


@dataclass
class ApiDiff:
    added: List[ApiDiffEntry] = field(default_factory=list)
    removed: List[ApiDiffEntry] = field(default_factory=list)
    modified: List[ApiDiffEntry] = field(default_factory=list)
    renamed: List[ApiDiffEntry] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified or self.renamed)

    def entries(self) -> List[ApiDiffEntry]:
        return self.removed + self.modified + self.renamed + self.added

    def to_dict(self) -> Dict[str, List[Dict]]:
        def describe(entry: ApiDiffEntry) -> Dict:
            return {
                'name': entry.name,
                'kind': entry.kind,
                'before': entry.before_identity,
                'after': entry.after_identity,
                'changes': [
                    {'element': c.element, 'change': c.change, 'name': c.name,
                     'before': c.before, 'after': c.after, 'breaking': c.breaking}
                    for c in entry.changes
                ],
            }
        return {
            'added': [describe(e) for e in self.added],
            'removed': [describe(e) for e in self.removed],
            'modified': [describe(e) for e in self.modified],
            'renamed': [describe(e) for e in self.renamed],
        }


@dataclass
class ExportKindChange:
    symbol: str
    before_kind: Optional[str]
    after_kind: Optional[str]


@dataclass
class ExportsDiff:
    """Name-level export diff used when no type shapes are available."""
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    changed: List[ExportKindChange] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'added': self.added,
            'removed': self.removed,
            'changed': [
                {'symbol': c.symbol, 'before_kind': c.before_kind, 'after_kind': c.after_kind}
                for c in self.changed
            ],
        }


def compute_exports_diff(before, after) -> ExportsDiff:
    """Diff two analysis results by exported symbol name."""
    before_exports = {f.symbol: f for f in before.findings if f.is_exported}
    after_exports = {f.symbol: f for f in after.findings if f.is_exported}

    diff = ExportsDiff()
    diff.added = sorted(name for name in after_exports if name not in before_exports)
    for name, before_finding in before_exports.items():
        after_finding = after_exports.get(name)
        if after_finding is None:
            diff.removed.append(name)
        elif before_finding.kind != after_finding.kind:
            diff.changed.append(ExportKindChange(name, before_finding.kind, after_finding.kind))
    diff.removed.sort()
    diff.changed.sort(key=lambda c: c.symbol)
    return diff


# ----------------------------------------------------------------------
# Shape deltas

def _parameter_text(signature: FunctionSignature, index: int) -> str:
    param = signature.parameters[index]
    prefix = "..." if param.rest else ""
    marker = "?" if param.optional and not param.rest else ""
    return f"{prefix}{param.name}{marker}: {param.type}"


def signature_delta(before: FunctionSignature, after: FunctionSignature) -> List[ShapeChange]:
    """Compare two signatures parameter by parameter, by position."""
    changes = []
    count = max(len(before.parameters), len(after.parameters))
    for i in range(count):
        if i >= len(after.parameters):
            param = before.parameters[i]
            changes.append(ShapeChange('parameter', 'removed', param.name,
                                       before=_parameter_text(before, i)))
            continue
        if i >= len(before.parameters):
            param = after.parameters[i]
            if param.optional:
                changes.append(ShapeChange('parameter', 'added', param.name,
                                           after=_parameter_text(after, i), breaking=False))
            else:
                changes.append(ShapeChange('parameter', 'required', param.name,
                                           after=_parameter_text(after, i)))
            continue

        old, new = before.parameters[i], after.parameters[i]
        if old.type != new.type or old.rest != new.rest:
            changes.append(ShapeChange('parameter', 'type_changed', new.name,
                                       before=old.type if old.rest == new.rest else _parameter_text(before, i),
                                       after=new.type if old.rest == new.rest else _parameter_text(after, i)))
        if old.optional and not new.optional:
            changes.append(ShapeChange('parameter', 'required', new.name,
                                       before=_parameter_text(before, i), after=_parameter_text(after, i)))
        elif not old.optional and new.optional:
            changes.append(ShapeChange('parameter', 'optional', new.name,
                                       before=_parameter_text(before, i), after=_parameter_text(after, i),
                                       breaking=False))
        elif old.default_value != new.default_value:
            changes.append(ShapeChange('parameter', 'default_changed', new.name,
                                       before=old.default_value, after=new.default_value, breaking=False))
        if old.name != new.name:
            changes.append(ShapeChange('parameter', 'renamed', new.name, before=old.name, after=new.name,
                                       breaking=False))

    # An implicit return type is unknown, not a change
    if before.return_type and after.return_type and before.return_type != after.return_type:
        changes.append(ShapeChange('return_type', 'changed', before=before.return_type, after=after.return_type))
    return changes


def _function_delta(before: FunctionShape, after: FunctionShape) -> List[ShapeChange]:
    changes = []
    if len(before.overloads) != len(after.overloads):
        changes.append(ShapeChange('overloads', 'count_changed',
                                   before=str(len(before.overloads)), after=str(len(after.overloads))))
        return changes
    if before.type_parameters != after.type_parameters:
        changes.append(ShapeChange('type_parameters', 'changed',
                                   before=', '.join(before.type_parameters),
                                   after=', '.join(after.type_parameters)))
    for old, new in zip(before.overloads, after.overloads):
        changes.extend(signature_delta(old, new))
    return changes


def _member_key(member: ClassMember) -> Tuple[str, bool]:
    return member.name, member.static


def _class_delta(before: ClassShape, after: ClassShape) -> List[ShapeChange]:
    changes = []
    after_members = {_member_key(m): m for m in after.members}
    for member in before.members:
        new = after_members.get(_member_key(member))
        if new is None:
            changes.append(ShapeChange('member', 'removed', member.name, before=member.kind))
            continue
        if member.signature is not None and new.signature is not None:
            deltas = signature_delta(member.signature, new.signature)
            if deltas:
                changes.append(ShapeChange('member', 'signature_changed', member.name,
                                           before=member.signature.render(), after=new.signature.render(),
                                           breaking=any(d.breaking for d in deltas)))
        elif (member.type or new.type) and member.type != new.type:
            changes.append(ShapeChange('member', 'type_changed', member.name,
                                       before=member.type, after=new.type))
    if before.extends != after.extends:
        changes.append(ShapeChange('extends', 'changed', before=before.extends, after=after.extends))
    return changes


def _type_delta(before: TypeShape, after: TypeShape) -> List[ShapeChange]:
    changes = []
    after_props = {p.name: p for p in after.properties}
    before_names = set()
    for prop in before.properties:
        before_names.add(prop.name)
        new = after_props.get(prop.name)
        if new is None:
            changes.append(ShapeChange('property', 'removed', prop.name, before=prop.type))
            continue
        if prop.optional and not new.optional:
            changes.append(ShapeChange('property', 'required', prop.name))
        if prop.type != new.type:
            changes.append(ShapeChange('property', 'type_changed', prop.name, before=prop.type, after=new.type))
    for prop in after.properties:
        if prop.name not in before_names and not prop.optional:
            changes.append(ShapeChange('property', 'required', prop.name, after=prop.type))

    if before.type_text and after.type_text and before.type_text != after.type_text:
        changes.append(ShapeChange('definition', 'changed', before=before.type_text, after=after.type_text))
    elif (before.index_signatures != after.index_signatures
          or sorted(before.extends) != sorted(after.extends)):
        changes.append(ShapeChange('definition', 'changed'))
    return changes


def _enum_delta(before: EnumShape, after: EnumShape) -> List[ShapeChange]:
    changes = []
    after_members = {m.name: m for m in after.members}
    for member in before.members:
        new = after_members.get(member.name)
        if new is None:
            changes.append(ShapeChange('enum_member', 'removed', member.name))
        elif member.value != new.value:
            changes.append(ShapeChange('enum_member', 'value_changed', member.name,
                                       before=member.value, after=new.value))
    return changes


def shape_delta(before: ApiShape, after: ApiShape) -> List[ShapeChange]:
    """Field-level differences between two shapes of the same export."""
    if type(before) is not type(after) or before.kind != after.kind:
        return [ShapeChange('kind', 'changed', before=before.kind, after=after.kind)]
    if isinstance(before, FunctionShape):
        return _function_delta(before, after)
    if isinstance(before, ClassShape):
        return _class_delta(before, after)
    if isinstance(before, TypeShape):
        return _type_delta(before, after)
    if isinstance(before, EnumShape):
        return _enum_delta(before, after)
    if isinstance(before, VariableShape):
        if before.type != after.type or before.readonly != after.readonly:
            return [ShapeChange('type', 'type_changed', before=before.type, after=after.type)]
        return []
    if isinstance(before, NamespaceShape):
        after_names = set(after.exports)
        return [ShapeChange('export', 'removed', name) for name in before.exports if name not in after_names]
    return []


def shapes_equivalent(before: ApiShape, after: ApiShape, tolerance: str = 'signature') -> bool:
    """Whether two differently named shapes describe the same API.

    exact: identical apart from the name.
    signature: functions need the same parameter types, optionality and
    return type per overload; everything else must match exactly.
    arity: functions need the same overload and parameter counts.
    """
    if type(before) is not type(after):
        return False
    if replace(after, name=before.name) == before:
        return True
    if tolerance == 'exact' or not isinstance(before, FunctionShape):
        return False
    if len(before.overloads) != len(after.overloads):
        return False

    for old, new in zip(before.overloads, after.overloads):
        if len(old.parameters) != len(new.parameters):
            return False
        if tolerance == 'arity':
            continue
        if old.return_type != new.return_type:
            return False
        for p, q in zip(old.parameters, new.parameters):
            if (p.type, p.optional, p.rest) != (q.type, q.optional, q.rest):
                return False
    return True


# ----------------------------------------------------------------------
# Diff

def _entry(diff_type: DiffType, before_id: Optional[str], after_id: Optional[str],
           before: Optional[ApiSnapshot], after: Optional[ApiSnapshot]) -> ApiDiffEntry:
    before_shape = before.exports[before_id] if before_id else None
    after_shape = after.exports[after_id] if after_id else None
    shape = after_shape or before_shape
    return ApiDiffEntry(
        diff_type=diff_type,
        name=shape.name,
        kind=shape.kind,
        before_identity=before_id,
        after_identity=after_id,
        before_shape=before_shape,
        after_shape=after_shape
    )


def compute_api_diff(before: ApiSnapshot, after: ApiSnapshot, tolerance: str = 'signature') -> ApiDiff:
    """Diff two API snapshots keyed by export identity.

    Leftover removed/added pairs with the same name, export type and file
    (a declaration that only moved lines) are treated as modifications.
    Remaining pairs of the same kind in the same file whose shapes are
    equivalent under ``tolerance`` become renames.
    """
    if tolerance not in RENAME_TOLERANCES:
        raise ValueError(f"Unknown rename tolerance: {tolerance}")

    diff = ApiDiff()
    removed_ids = sorted(i for i in before.exports if i not in after.exports)
    added_ids = sorted(i for i in after.exports if i not in before.exports)

    for identity in sorted(i for i in before.exports if i in after.exports):
        old, new = before.exports[identity], after.exports[identity]
        if old == new:
            continue
        entry = _entry(DiffType.MODIFIED, identity, identity, before, after)
        entry.changes = shape_delta(old, new) or [ShapeChange('shape', 'changed')]
        diff.modified.append(entry)

    # Declarations that only moved within their file
    for removed_id in list(removed_ids):
        r = split_identity(removed_id)
        for added_id in added_ids:
            a = split_identity(added_id)
            if (r['name'], r['export_type'], r['file_path']) != (a['name'], a['export_type'], a['file_path']):
                continue
            removed_ids.remove(removed_id)
            added_ids.remove(added_id)
            old, new = before.exports[removed_id], after.exports[added_id]
            if old != new:
                entry = _entry(DiffType.MODIFIED, removed_id, added_id, before, after)
                entry.changes = shape_delta(old, new) or [ShapeChange('shape', 'changed')]
                diff.modified.append(entry)
            break

    for removed_id in list(removed_ids):
        old = before.exports[removed_id]
        file_path = split_identity(removed_id)['file_path']
        for added_id in added_ids:
            new = after.exports[added_id]
            if old.kind != new.kind or split_identity(added_id)['file_path'] != file_path:
                continue
            if shapes_equivalent(old, new, tolerance):
                removed_ids.remove(removed_id)
                added_ids.remove(added_id)
                entry = _entry(DiffType.RENAMED, removed_id, added_id, before, after)
                if old.name != new.name:
                    entry.changes = [ShapeChange('name', 'renamed', before=old.name, after=new.name)]
                diff.renamed.append(entry)
                break

    diff.removed = [_entry(DiffType.REMOVED, i, None, before, after) for i in removed_ids]
    diff.added = [_entry(DiffType.ADDED, None, i, before, after) for i in added_ids]

    logger.debug("API diff: %d added, %d removed, %d modified, %d renamed",
                 len(diff.added), len(diff.removed), len(diff.modified), len(diff.renamed))
    return diff
