from django.contrib import admin

from .models import ClassFeeStructure, LedgerEntry, Receipt


@admin.register(ClassFeeStructure)
class ClassFeeStructureAdmin(admin.ModelAdmin):
    list_display = ('school_class', 'section', 'term', 'session', 'amount', 'is_active')
    list_filter = ('school', 'session', 'term', 'is_active')
    search_fields = ('school_class__name', 'section__name', 'description')


class ReceiptInline(admin.StackedInline):
    model = Receipt
    extra = 0
    can_delete = False
    readonly_fields = ('receipt_number', 'issued_at')


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    list_display = (
        'student_code',
        'session',
        'term',
        'entry_type',
        'amount',
        'method',
        'balance_after',
        'recorded_by',
        'created_at',
    )
    list_filter = ('school', 'session', 'term', 'entry_type', 'method')
    search_fields = ('student_code', 'description')
    inlines = (ReceiptInline,)

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Receipt)
class ReceiptAdmin(admin.ModelAdmin):
    list_display = ('receipt_number', 'school', 'entry', 'issued_at')
    list_filter = ('school',)
    search_fields = ('receipt_number', 'entry__student_code')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
