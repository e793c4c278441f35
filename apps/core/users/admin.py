from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin

from .models import AuditLog, User


@admin.register(User)
class UserAdmin(DjangoUserAdmin):
    list_display = ('username', 'role', 'school', 'student', 'is_staff')
    list_filter = ('role', 'school')
    fieldsets = DjangoUserAdmin.fieldsets + (
        ('School access', {'fields': ('role', 'school', 'student')}),
    )


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'action', 'user', 'school', 'target_model', 'target_id')
    list_filter = ('action', 'school', 'method', 'created_at')
    search_fields = ('path', 'target_model', 'target_id', 'user__username')
