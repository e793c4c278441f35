import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import apps.core.fees.models

TERM_CHOICES = [('First Term', 'First Term'), ('Second Term', 'Second Term'), ('Third Term', 'Third Term')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('academics', '0001_initial'),
        ('schools', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='ClassFeeStructure',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('term', models.CharField(choices=TERM_CHOICES, max_length=20)),
                ('session', models.CharField(max_length=20)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('description', models.CharField(blank=True, max_length=255)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('school', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='class_fee_structures', to='schools.school')),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='fee_structures', to='academics.schoolclass')),
                ('section', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='fee_structures', to='academics.section')),
            ],
            options={
                'ordering': ['school_class__display_order', 'section__name', 'id'],
                'indexes': [
                    models.Index(fields=['school', 'term', 'session', 'is_active'], name='fee_structure_period_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('section__isnull', False)), fields=('school_class', 'section', 'term', 'session'), name='unique_stream_fee_per_period'),
                    models.UniqueConstraint(condition=models.Q(('section__isnull', True)), fields=('school_class', 'term', 'session'), name='unique_class_fee_per_period'),
                ],
            },
            bases=(apps.core.fees.models.PeriodFieldsMixin, models.Model),
        ),
        migrations.CreateModel(
            name='LedgerEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('student_code', models.CharField(max_length=50)),
                ('term', models.CharField(choices=TERM_CHOICES, max_length=20)),
                ('session', models.CharField(max_length=20)),
                ('entry_type', models.CharField(choices=[('Bill', 'Bill'), ('Payment', 'Payment'), ('Adjustment', 'Adjustment'), ('CarryForward', 'Carry forward')], max_length=20)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('description', models.CharField(blank=True, max_length=255)),
                ('method', models.CharField(blank=True, choices=[('Cash', 'Cash'), ('Transfer', 'Bank transfer'), ('POS', 'POS'), ('Online', 'Online')], max_length=20)),
                ('balance_after', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='ledger_entries_recorded', to=settings.AUTH_USER_MODEL)),
                ('school', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='ledger_entries', to='schools.school')),
            ],
            options={
                'verbose_name_plural': 'ledger entries',
                'ordering': ['created_at', 'id'],
                'abstract': False,
                'indexes': [
                    models.Index(fields=['school', 'session', 'term'], name='ledger_period_idx'),
                    models.Index(fields=['school', 'student_code', 'session', 'term'], name='ledger_student_period_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('entry_type', 'CarryForward')), fields=('school', 'student_code', 'term', 'session'), name='unique_carry_forward_per_student_period'),
                    models.CheckConstraint(condition=models.Q(('amount__gt', 0), ('entry_type', 'Adjustment'), _connector='OR'), name='ledger_amount_positive_unless_adjustment'),
                ],
            },
            bases=(apps.core.fees.models.PeriodFieldsMixin, models.Model),
        ),
        migrations.CreateModel(
            name='Receipt',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('receipt_number', models.CharField(max_length=50, unique=True)),
                ('issued_at', models.DateTimeField(auto_now_add=True)),
                ('entry', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='receipt', to='fees.ledgerentry')),
                ('school', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='fee_receipts', to='schools.school')),
            ],
            options={
                'ordering': ['-issued_at', '-id'],
                'indexes': [
                    models.Index(fields=['school', 'issued_at'], name='receipt_school_issued_idx'),
                ],
            },
        ),
    ]
