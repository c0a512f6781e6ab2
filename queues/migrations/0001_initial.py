import uuid

import django.contrib.auth.models
import django.contrib.auth.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('email', models.EmailField(blank=True, max_length=254, verbose_name='email address')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('role', models.CharField(choices=[('reception', 'Reception'), ('doctor', 'Doctor'), ('admin', 'Administrator'), ('display', 'Display')], default='reception', max_length=16)),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'abstract': False,
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='DailyQueue',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('doctor_id', models.CharField(db_index=True, max_length=64)),
                ('department_id', models.CharField(blank=True, default='', max_length=64)),
                ('queue_date', models.DateField(db_index=True)),
                ('token_prefix', models.CharField(default='A', max_length=8)),
                ('current_token_number', models.PositiveIntegerField(default=0)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('avg_consultation_minutes', models.FloatField(default=15.0)),
                ('consultation_samples', models.PositiveIntegerField(default=0)),
                ('version', models.PositiveBigIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'indexes': [models.Index(fields=['queue_date', 'is_active'], name='queues_dq_date_active_idx')],
                'constraints': [models.UniqueConstraint(fields=('doctor_id', 'department_id', 'queue_date'), name='uniq_daily_queue_per_doctor_department_day')],
            },
        ),
        migrations.CreateModel(
            name='QueueEntry',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('queue_date', models.DateField()),
                ('patient_id', models.CharField(db_index=True, max_length=64)),
                ('appointment_id', models.CharField(blank=True, max_length=64, null=True)),
                ('sequence', models.PositiveIntegerField()),
                ('token_number', models.CharField(max_length=32)),
                ('entry_type', models.CharField(choices=[('appointment', 'Appointment'), ('walk_in', 'Walk-in'), ('emergency', 'Emergency')], default='walk_in', max_length=16)),
                ('priority', models.CharField(choices=[('normal', 'Normal'), ('priority', 'Priority'), ('emergency', 'Emergency')], default='normal', max_length=16)),
                ('status', models.CharField(choices=[('waiting', 'Waiting'), ('called', 'Called'), ('in_consultation', 'In consultation'), ('completed', 'Completed'), ('no_show', 'No show'), ('cancelled', 'Cancelled'), ('transferred', 'Transferred')], db_index=True, default='waiting', max_length=20)),
                ('position_in_queue', models.PositiveIntegerField(blank=True, null=True)),
                ('estimated_wait_minutes', models.PositiveIntegerField(blank=True, null=True)),
                ('symptoms', models.TextField(blank=True, null=True)),
                ('notes', models.TextField(blank=True, null=True)),
                ('checked_in_at', models.DateTimeField()),
                ('called_at', models.DateTimeField(blank=True, null=True)),
                ('consultation_started_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='queue_entries', to=settings.AUTH_USER_MODEL)),
                ('queue', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='entries', to='queues.dailyqueue')),
                ('transferred_to', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='transferred_from', to='queues.queueentry')),
            ],
            options={
                'indexes': [models.Index(fields=['queue', 'status'], name='queues_entry_queue_status_idx')],
                'constraints': [
                    models.UniqueConstraint(fields=('queue', 'sequence'), name='uniq_entry_sequence_per_queue'),
                    models.UniqueConstraint(fields=('queue', 'token_number'), name='uniq_entry_token_per_queue'),
                    models.UniqueConstraint(condition=models.Q(('status__in', ['waiting', 'called', 'in_consultation'])), fields=('patient_id', 'queue_date'), name='uniq_active_entry_per_patient_day'),
                ],
            },
        ),
        migrations.CreateModel(
            name='QueueEntryTransition',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('from_status', models.CharField(blank=True, max_length=20, null=True)),
                ('to_status', models.CharField(max_length=20)),
                ('timestamp', models.DateTimeField()),
                ('reason', models.CharField(blank=True, max_length=255)),
                ('entry', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transitions', to='queues.queueentry')),
                ('operator', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='queue_transitions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'indexes': [models.Index(fields=['entry', 'timestamp'], name='queues_trans_entry_ts_idx')],
            },
        ),
    ]
