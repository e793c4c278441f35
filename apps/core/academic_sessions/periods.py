"""
Canonical academic period values.

Terms and sessions arrive as free text ("First", "1st Term", "2024-25") from
forms, imports and older ledger rows. They are normalised here, once, into
``Period(term='First Term', session='2024/2025')`` and only that form is
stored or compared.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from django.core.exceptions import ValidationError
from django.db import models


class Term(models.TextChoices):
    FIRST = 'First Term', 'First Term'
    SECOND = 'Second Term', 'Second Term'
    THIRD = 'Third Term', 'Third Term'


TERM_ORDER = tuple(Term.values)

_TERM_ALIASES = {
    'first': Term.FIRST.value,
    '1st': Term.FIRST.value,
    '1': Term.FIRST.value,
    'one': Term.FIRST.value,
    'second': Term.SECOND.value,
    '2nd': Term.SECOND.value,
    '2': Term.SECOND.value,
    'two': Term.SECOND.value,
    'third': Term.THIRD.value,
    '3rd': Term.THIRD.value,
    '3': Term.THIRD.value,
    'three': Term.THIRD.value,
}

SESSION_PATTERN = re.compile(r'^(\d{4})\s*[/-]\s*(\d{4}|\d{2})$')
TERM_SUFFIX_PATTERN = re.compile(r'\s*term$')


def normalize_term(value, field='term') -> str:
    raw = ' '.join(str(value or '').split()).lower()
    raw = TERM_SUFFIX_PATTERN.sub('', raw)
    term = _TERM_ALIASES.get(raw)
    if term is None:
        raise ValidationError({field: f'Unrecognised term "{value}".'})
    return term


def parse_session(value, field='session') -> tuple[int, int]:
    raw = str(value or '').strip()
    match = SESSION_PATTERN.match(raw)
    if not match:
        raise ValidationError({field: f'Session must look like YYYY/YYYY, got "{value}".'})

    start = int(match.group(1))
    end_text = match.group(2)
    if len(end_text) == 4:
        end = int(end_text)
    else:
        # "2024-25" style: expand the short year within the start year's century.
        end = start - start % 100 + int(end_text)
        if end < start:
            end += 100

    if end != start + 1:
        raise ValidationError({field: f'Session "{value}" must span two consecutive years.'})
    return start, end


def normalize_session(value, field='session') -> str:
    start, end = parse_session(value, field=field)
    return f'{start}/{end}'


def shift_session(session_name, years) -> str:
    start, end = parse_session(session_name)
    return f'{start + years}/{end + years}'


@dataclass(frozen=True)
class Period:
    term: str
    session: str

    @classmethod
    def parse(cls, term, session) -> Period:
        errors = {}
        normalized_term = normalized_session = None
        try:
            normalized_term = normalize_term(term)
        except ValidationError as exc:
            errors.update(exc.message_dict)
        try:
            normalized_session = normalize_session(session)
        except ValidationError as exc:
            errors.update(exc.message_dict)
        if errors:
            raise ValidationError(errors)
        return cls(term=normalized_term, session=normalized_session)

    @property
    def term_index(self) -> int:
        return TERM_ORDER.index(self.term)

    @property
    def start_year(self) -> int:
        return parse_session(self.session)[0]

    @property
    def sort_key(self):
        return (self.start_year, self.term_index)

    def previous(self) -> Period:
        """First Term of Y/Y+1 rolls back to Third Term of Y-1/Y."""
        index = self.term_index
        if index > 0:
            return Period(term=TERM_ORDER[index - 1], session=self.session)
        return Period(term=TERM_ORDER[-1], session=shift_session(self.session, -1))

    def next(self) -> Period:
        index = self.term_index
        if index < len(TERM_ORDER) - 1:
            return Period(term=TERM_ORDER[index + 1], session=self.session)
        return Period(term=TERM_ORDER[0], session=shift_session(self.session, 1))

    def as_dict(self):
        return {'term': self.term, 'session': self.session}

    def __str__(self):
        return f'{self.session} {self.term}'
