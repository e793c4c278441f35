"""Student directory: resolves ledger student ids to names and class labels."""
from __future__ import annotations

from typing import Iterable

from apps.core.utils.exceptions import NotFoundError

from .models import Student


def _directory_queryset(school):
    return Student.objects.filter(school=school).select_related('current_class', 'current_section')


def lookup_student(*, school, student_id) -> Student | None:
    student_id = (student_id or '').strip()
    if not student_id:
        return None
    return _directory_queryset(school).filter(admission_number=student_id).first()


def lookup_students(*, school, student_ids: Iterable[str]) -> dict[str, Student]:
    wanted = {student_id for student_id in student_ids if student_id}
    if not wanted:
        return {}
    return {
        student.admission_number: student
        for student in _directory_queryset(school).filter(admission_number__in=wanted)
    }


def require_student(*, school, student_id) -> Student:
    student = lookup_student(school=school, student_id=student_id)
    if student is None:
        raise NotFoundError(f'Student {student_id} not found.')
    return student


def lock_student(*, school, student_id) -> Student:
    """Row-lock the student so balance checks and writes for it are serialised.

    Must be called inside ``transaction.atomic()``.
    """
    student = (
        _directory_queryset(school)
        .select_for_update(of=('self',))
        .filter(admission_number=(student_id or '').strip())
        .first()
    )
    if student is None:
        raise NotFoundError(f'Student {student_id} not found.')
    return student


def active_students(*, school, school_class=None):
    students = _directory_queryset(school).filter(is_active=True, is_archived=False)
    if school_class is not None:
        students = students.filter(current_class=school_class)
    return students.order_by('current_class__display_order', 'admission_number')
