from django.contrib import admin

from .models import SchoolClass, Section


class SectionInline(admin.TabularInline):
    model = Section
    extra = 0


@admin.register(SchoolClass)
class SchoolClassAdmin(admin.ModelAdmin):
    list_display = ('name', 'code', 'school', 'display_order', 'is_active')
    list_filter = ('school', 'is_active')
    search_fields = ('name', 'code', 'school__name')
    inlines = [SectionInline]


@admin.register(Section)
class SectionAdmin(admin.ModelAdmin):
    list_display = ('name', 'school_class', 'is_active')
    list_filter = ('school_class__school', 'is_active')
    search_fields = ('name', 'school_class__name')
