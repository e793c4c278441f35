from django.contrib import admin

from .models import AcademicSession, AcademicTerm


class AcademicTermInline(admin.TabularInline):
    model = AcademicTerm
    extra = 0


@admin.register(AcademicSession)
class AcademicSessionAdmin(admin.ModelAdmin):
    list_display = ('name', 'school', 'start_date', 'end_date', 'is_active')
    list_filter = ('school', 'is_active')
    search_fields = ('name', 'school__name')
    inlines = (AcademicTermInline,)


@admin.register(AcademicTerm)
class AcademicTermAdmin(admin.ModelAdmin):
    list_display = ('name', 'session', 'start_date', 'end_date', 'is_active')
    list_filter = ('session__school', 'name', 'is_active')
