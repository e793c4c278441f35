from django import forms
from django.core.exceptions import ValidationError

from .models import AcademicSession, AcademicTerm
from .periods import normalize_session, normalize_term


class AcademicSessionForm(forms.ModelForm):
    class Meta:
        model = AcademicSession
        fields = ['name', 'start_date', 'end_date', 'is_active']

    def __init__(self, *args, **kwargs):
        self.school = kwargs.pop('school')
        super().__init__(*args, **kwargs)
        self.instance.school = self.school

    def clean_name(self):
        try:
            name = normalize_session(self.cleaned_data['name'])
        except ValidationError as exc:
            raise ValidationError(exc.messages) from exc
        duplicate = AcademicSession.objects.filter(school=self.school, name=name).exclude(pk=self.instance.pk)
        if duplicate.exists():
            raise ValidationError(f'Session {name} already exists.')
        return name


class AcademicTermForm(forms.ModelForm):
    # Free text ("1st", "Second") normalised to the stored term name.
    name = forms.CharField(max_length=30)

    class Meta:
        model = AcademicTerm
        fields = ['name', 'start_date', 'end_date', 'is_active']

    def __init__(self, *args, **kwargs):
        self.session = kwargs.pop('session')
        super().__init__(*args, **kwargs)
        self.instance.session = self.session

    def clean_name(self):
        try:
            name = normalize_term(self.cleaned_data['name'])
        except ValidationError as exc:
            raise ValidationError(exc.messages) from exc
        duplicate = AcademicTerm.objects.filter(session=self.session, name=name).exclude(pk=self.instance.pk)
        if duplicate.exists():
            raise ValidationError(f'{name} already exists in session {self.session.name}.')
        return name
