"""
Class / section name resolution for student imports.

A ReferenceData snapshot is built once per import call and only read afterwards.
Lookups are case-insensitive and ignore surrounding whitespace.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import SchoolClass, Section


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def section_key(class_name: Optional[str], section_name: Optional[str]) -> str:
    return f"{_norm(class_name)}|{_norm(section_name)}"


@dataclass
class ReferenceData:
    classes: Dict[str, UUID] = field(default_factory=dict)
    sections: Dict[str, UUID] = field(default_factory=dict)

    def class_id(self, class_name: Optional[str]) -> Optional[UUID]:
        return self.classes.get(_norm(class_name))

    def section_id(self, class_name: Optional[str], section_name: Optional[str]) -> Optional[UUID]:
        return self.sections.get(section_key(class_name, section_name))


async def build_reference_data(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year_id: Optional[UUID] = None,
) -> ReferenceData:
    """
    Snapshot of the tenant's active classes and sections.
    With academic_year_id, sections of that year and year-less sections are included;
    a year-specific section wins over a year-less one with the same name.
    """
    class_rows = await db.execute(
        select(SchoolClass.id, SchoolClass.name).where(
            SchoolClass.tenant_id == tenant_id,
            SchoolClass.is_active.is_(True),
        )
    )
    data = ReferenceData()
    for class_id, name in class_rows.all():
        data.classes[_norm(name)] = class_id

    stmt = (
        select(Section.id, Section.name, Section.academic_year_id, SchoolClass.name)
        .join(SchoolClass, SchoolClass.id == Section.class_id)
        .where(
            Section.tenant_id == tenant_id,
            Section.is_active.is_(True),
            SchoolClass.is_active.is_(True),
        )
    )
    if academic_year_id is not None:
        stmt = stmt.where(
            or_(Section.academic_year_id == academic_year_id, Section.academic_year_id.is_(None))
        )
    section_rows = await db.execute(stmt)

    year_specific = set()
    for section_id, section_name, section_year_id, class_name in section_rows.all():
        key = section_key(class_name, section_name)
        if key in year_specific:
            continue
        data.sections[key] = section_id
        if section_year_id is not None:
            year_specific.add(key)
    return data


async def list_classes_with_sections(
    db: AsyncSession,
    tenant_id: UUID,
) -> List[Tuple[str, List[str]]]:
    """Active classes ordered by display order then name, each with its distinct section names."""
    class_result = await db.execute(
        select(SchoolClass.id, SchoolClass.name)
        .where(SchoolClass.tenant_id == tenant_id, SchoolClass.is_active.is_(True))
        .order_by(SchoolClass.display_order.is_(None), SchoolClass.display_order, SchoolClass.name)
    )
    classes = class_result.all()

    section_result = await db.execute(
        select(Section.class_id, Section.name)
        .where(Section.tenant_id == tenant_id, Section.is_active.is_(True))
        .order_by(Section.display_order.is_(None), Section.display_order, Section.name)
    )
    by_class: Dict[UUID, List[str]] = {}
    for class_id, name in section_result.all():
        names = by_class.setdefault(class_id, [])
        if name not in names:
            names.append(name)

    return [(name, by_class.get(class_id, [])) for class_id, name in classes]
