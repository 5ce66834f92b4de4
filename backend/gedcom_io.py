"""GEDCOM import and export for a family tree."""

import os
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from gedcom.element.element import Element
from gedcom.element.family import FamilyElement
from gedcom.element.individual import IndividualElement
from gedcom.parser import Parser

from models import Member, Relationship, RelationshipType, Tree


# ============================================================================
# Export
# ============================================================================

def _gedcom_name(name: str) -> str:
    """'Rose Anne Smith' -> 'Rose Anne /Smith/'. Single names stay as-is."""
    parts = name.split()
    if len(parts) < 2:
        return name
    return f"{' '.join(parts[:-1])} /{parts[-1]}/"


def _element_to_lines(element: Element, lines: list[str], level: int = 0) -> None:
    """Recursively convert an element to GEDCOM lines."""
    pointer = element.get_pointer() or ""
    tag = element.get_tag()
    value = element.get_value() or ""

    if pointer:
        line = f"{level} {pointer} {tag}"
    else:
        line = f"{level} {tag}"

    if value:
        line += f" {value}"

    lines.append(line)

    for child in element.get_child_elements():
        _element_to_lines(child, lines, level + 1)


def _child(parent: Element, tag: str, value: str = "") -> Element:
    element = Element(level=parent.get_level() + 1, pointer='', tag=tag, value=value)
    parent.add_child_element(element)
    return element


def _group_families(
    members: Sequence[Member],
    relationships: Sequence[Relationship],
) -> dict[tuple[str, ...], list[str]]:
    """
    Group relationships into GEDCOM families.

    Every spouse couple is a family, and a child of both partners joins it.
    Any other child is listed in a single-parent family of each parent, so
    two parents never share a HUSB/WIFE record unless they are spouses.
    """
    order = {member.id: index for index, member in enumerate(members)}

    def key(*ids: str) -> tuple[str, ...]:
        return tuple(sorted(ids, key=order.__getitem__))

    families: dict[tuple[str, ...], list[str]] = {}
    parents_of: dict[str, list[str]] = {}

    for rel in relationships:
        if rel.source_id not in order or rel.target_id not in order:
            continue
        if rel.type == RelationshipType.SPOUSE:
            families.setdefault(key(rel.source_id, rel.target_id), [])
        else:
            parents_of.setdefault(rel.target_id, []).append(rel.source_id)

    couples = set(families)
    for child_id, parents in parents_of.items():
        if len(parents) == 2 and key(*parents) in couples:
            families[key(*parents)].append(child_id)
        else:
            for parent_id in parents:
                families.setdefault(key(parent_id), []).append(child_id)

    return families


def export_tree(tree: Tree, members: Sequence[Member], relationships: Sequence[Relationship]) -> str:
    """
    Render a tree as GEDCOM 5.5.1 text.

    Members carry no sex, so the first partner of a family (in member
    order) is written as HUSB and the second as WIFE.
    """
    pointers = {member.id: f"@I{index + 1}@" for index, member in enumerate(members)}
    individuals: dict[str, IndividualElement] = {}

    head = Element(level=0, pointer='', tag='HEAD', value='')
    source = _child(head, 'SOUR', 'KINCANVAS')
    _child(source, 'NAME', 'KinCanvas')
    gedc = _child(head, 'GEDC')
    _child(gedc, 'VERS', '5.5.1')
    _child(gedc, 'FORM', 'LINEAGE-LINKED')
    _child(head, 'CHAR', 'UTF-8')
    _child(head, 'FILE', tree.name)

    for member in members:
        indi = IndividualElement(level=0, pointer=pointers[member.id], tag='INDI', value='')
        _child(indi, 'NAME', _gedcom_name(member.name))
        if member.birth_year is not None:
            birth = _child(indi, 'BIRT')
            _child(birth, 'DATE', str(member.birth_year))
        individuals[member.id] = indi

    families: list[FamilyElement] = []
    for index, (parents, children) in enumerate(_group_families(members, relationships).items()):
        family_pointer = f"@F{index + 1}@"
        fam = FamilyElement(level=0, pointer=family_pointer, tag='FAM', value='')
        for role, parent_id in zip(('HUSB', 'WIFE'), parents):
            _child(fam, role, pointers[parent_id])
            _child(individuals[parent_id], 'FAMS', family_pointer)
        for child_id in children:
            _child(fam, 'CHIL', pointers[child_id])
            _child(individuals[child_id], 'FAMC', family_pointer)
        families.append(fam)

    lines: list[str] = []
    for element in [head, *individuals.values(), *families]:
        _element_to_lines(element, lines)
    lines.append("0 TRLR")
    return "\n".join(lines) + "\n"


# ============================================================================
# Import
# ============================================================================

@dataclass
class GedcomPerson:
    pointer: str
    name: str
    birth_year: int | None = None


@dataclass
class GedcomImport:
    """Individuals and links read from a GEDCOM file, keyed by pointer."""
    people: list[GedcomPerson] = field(default_factory=list)
    links: list[tuple[str, str, RelationshipType]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def add_link(self, source: str, target: str, rel_type: RelationshipType) -> None:
        """Keep a link unless it is a self-link or its pair is already linked."""
        if source == target:
            self.skipped.append(f"{source} linked to itself")
            return
        for a, b, _ in self.links:
            if {a, b} == {source, target}:
                self.skipped.append(f"{source} and {target} already linked")
                return
        self.links.append((source, target, rel_type))


def parse_gedcom_content(content: str) -> Parser:
    """Parse GEDCOM content from a string."""
    # python-gedcom only reads from a path
    with tempfile.NamedTemporaryFile(mode='w', suffix='.ged', delete=False, encoding='utf-8') as f:
        f.write(content)
        temp_path = f.name

    try:
        parser = Parser()
        parser.parse_file(temp_path, strict=False)
        return parser
    finally:
        os.unlink(temp_path)


def _person(element: IndividualElement) -> GedcomPerson:
    first_name, last_name = element.get_name()
    birth_year = element.get_birth_year()
    return GedcomPerson(
        pointer=element.get_pointer(),
        name=f"{first_name} {last_name}".strip() or "Unknown",
        birth_year=birth_year if birth_year != -1 else None,
    )


def read_gedcom(content: str) -> GedcomImport:
    """Read individuals plus their spouse and parent links from GEDCOM text."""
    parser = parse_gedcom_content(content)
    result = GedcomImport()
    known: set[str] = set()

    for element in parser.get_root_child_elements():
        if isinstance(element, IndividualElement):
            person = _person(element)
            result.people.append(person)
            known.add(person.pointer)

    for element in parser.get_root_child_elements():
        if not isinstance(element, FamilyElement):
            continue
        parents = [
            p.get_pointer()
            for role in ("HUSB", "WIFE")
            for p in parser.get_family_members(element, role)
            if isinstance(p, IndividualElement) and p.get_pointer() in known
        ]
        children = [
            c.get_pointer()
            for c in parser.get_family_members(element, "CHIL")
            if isinstance(c, IndividualElement) and c.get_pointer() in known
        ]
        if len(parents) == 2:
            result.add_link(parents[0], parents[1], RelationshipType.SPOUSE)
        for parent in parents:
            for child in children:
                result.add_link(parent, child, RelationshipType.PARENT)

    return result


def import_summary(result: GedcomImport) -> dict[str, Any]:
    return {
        "people": len(result.people),
        "links": len(result.links),
        "skipped": result.skipped,
    }
