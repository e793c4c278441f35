import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('schools', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='AcademicSession',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=20)),
                ('start_date', models.DateField()),
                ('end_date', models.DateField()),
                ('is_active', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('school', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='academic_sessions', to='schools.school')),
            ],
            options={
                'ordering': ['-start_date', '-id'],
                'indexes': [
                    models.Index(fields=['school', 'is_active'], name='session_school_active_idx'),
                    models.Index(fields=['school', 'start_date'], name='session_school_start_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('school', 'name'), name='unique_session_name_per_school'),
                    models.UniqueConstraint(condition=models.Q(('is_active', True)), fields=('school',), name='unique_active_session_per_school'),
                    models.CheckConstraint(condition=models.Q(('end_date__gt', models.F('start_date'))), name='session_end_after_start'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AcademicTerm',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(choices=[('First Term', 'First Term'), ('Second Term', 'Second Term'), ('Third Term', 'Third Term')], max_length=20)),
                ('start_date', models.DateField(blank=True, null=True)),
                ('end_date', models.DateField(blank=True, null=True)),
                ('is_active', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='terms', to='academic_sessions.academicsession')),
            ],
            options={
                'ordering': ['session__start_date', 'name', 'id'],
                'constraints': [
                    models.UniqueConstraint(fields=('session', 'name'), name='unique_term_name_per_session'),
                    models.UniqueConstraint(condition=models.Q(('is_active', True)), fields=('session',), name='unique_active_term_per_session'),
                ],
            },
        ),
    ]
