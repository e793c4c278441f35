from django.db import models


class SchoolQuerySet(models.QuerySet):
    def for_school(self, school):
        return self.filter(school=school)


class SchoolManager(models.Manager):
    def get_queryset(self):
        return SchoolQuerySet(self.model, using=self._db)

    def for_school(self, school):
        return self.get_queryset().for_school(school)


class PeriodQuerySet(SchoolQuerySet):
    """Rows keyed by canonical ``term`` / ``session`` strings."""

    def for_period(self, period):
        return self.filter(term=period.term, session=period.session)

    def for_session(self, session_name):
        return self.filter(session=session_name)


class PeriodManager(SchoolManager):
    def get_queryset(self):
        return PeriodQuerySet(self.model, using=self._db)

    def for_period(self, period):
        return self.get_queryset().for_period(period)
