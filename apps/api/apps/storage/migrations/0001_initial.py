# Generated migration for storage app - record store tables

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='ProcedureRecord',
            fields=[
                ('procedure_id', models.CharField(max_length=64, primary_key=True, serialize=False)),
                ('patient_id', models.CharField(db_index=True, max_length=64)),
                ('category', models.CharField(
                    choices=[('RCT', 'Root Canal Treatment'), ('SCALING', 'Scaling'), ('EXTRACTION', 'Extraction')],
                    max_length=32
                )),
                ('status', models.CharField(
                    choices=[('DRAFT', 'Draft'), ('IN_PROGRESS', 'In Progress'), ('CLOSED', 'Closed'), ('CANCELLED', 'Cancelled')],
                    default='DRAFT',
                    max_length=16
                )),
                ('name', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True, null=True)),
                ('tooth_number', models.CharField(blank=True, max_length=2, null=True)),
                ('tooth_quadrant', models.CharField(blank=True, max_length=16, null=True)),
                ('assigned_by', models.CharField(max_length=64)),
                ('assigned_date', models.DateTimeField()),
                ('start_date', models.DateTimeField(blank=True, null=True)),
                ('end_date', models.DateTimeField(blank=True, null=True)),
                ('is_backfilled', models.BooleanField(default=False)),
                ('archived', models.BooleanField(default=False)),
                ('archive_location', models.CharField(blank=True, max_length=512, null=True)),
                ('cancellation_reason', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField()),
                ('updated_at', models.DateTimeField()),
                ('row_version', models.IntegerField(default=1)),
            ],
            options={
                'db_table': 'procedure',
            },
        ),
        migrations.CreateModel(
            name='ProcedureStepRecord',
            fields=[
                ('step_id', models.CharField(max_length=64, primary_key=True, serialize=False)),
                ('procedure_id', models.CharField(db_index=True, max_length=64)),
                ('step_type', models.CharField(max_length=64)),
                ('display_name', models.CharField(max_length=255)),
                ('position', models.IntegerField(default=0)),
                ('mandatory', models.BooleanField(default=True)),
                ('completed', models.BooleanField(default=False)),
                ('skipped', models.BooleanField(default=False)),
                ('skip_reason', models.TextField(blank=True, null=True)),
                ('visit_date', models.DateField(blank=True, null=True)),
                ('created_at', models.DateTimeField()),
                ('updated_at', models.DateTimeField()),
            ],
            options={
                'db_table': 'procedure_step',
            },
        ),
        migrations.CreateModel(
            name='ImageRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('image_id', models.CharField(max_length=64)),
                ('version', models.IntegerField()),
                ('step_id', models.CharField(db_index=True, max_length=64)),
                ('procedure_id', models.CharField(db_index=True, max_length=64)),
                ('patient_id', models.CharField(max_length=64)),
                ('is_current', models.BooleanField(default=True)),
                ('original_key', models.CharField(max_length=512)),
                ('thumbnail_small_key', models.CharField(blank=True, max_length=512, null=True)),
                ('thumbnail_large_key', models.CharField(blank=True, max_length=512, null=True)),
                ('annotation_key', models.CharField(blank=True, max_length=512, null=True)),
                ('has_annotation', models.BooleanField(default=False)),
                ('filename', models.CharField(max_length=255)),
                ('size_bytes', models.BigIntegerField()),
                ('mime_type', models.CharField(max_length=100)),
                ('width', models.IntegerField()),
                ('height', models.IntegerField()),
                ('uploaded_by', models.CharField(max_length=64)),
                ('uploaded_at', models.DateTimeField()),
                ('is_deleted', models.BooleanField(default=False)),
                ('deleted_at', models.DateTimeField(blank=True, null=True)),
                ('storage_tier', models.CharField(
                    choices=[('active', 'Active'), ('cold', 'Cold')],
                    default='active',
                    max_length=8
                )),
                ('created_at', models.DateTimeField()),
                ('updated_at', models.DateTimeField()),
            ],
            options={
                'db_table': 'image_version',
            },
        ),
        migrations.CreateModel(
            name='ArchivalCheckpoint',
            fields=[
                ('name', models.CharField(max_length=64, primary_key=True, serialize=False)),
                ('cursor', models.TextField(blank=True, null=True)),
                ('cutoff', models.DateTimeField(blank=True, null=True)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('processed_count', models.IntegerField(default=0)),
                ('archived_count', models.IntegerField(default=0)),
                ('failed_count', models.IntegerField(default=0)),
            ],
            options={
                'db_table': 'archival_checkpoint',
            },
        ),
        migrations.AddIndex(
            model_name='procedurerecord',
            index=models.Index(fields=['patient_id', 'created_at'], name='idx_procedure_patient'),
        ),
        migrations.AddIndex(
            model_name='procedurerecord',
            index=models.Index(fields=['status', 'created_at'], name='idx_procedure_status'),
        ),
        migrations.AddIndex(
            model_name='procedurerecord',
            index=models.Index(fields=['archived', 'created_at'], name='idx_procedure_archived'),
        ),
        migrations.AddIndex(
            model_name='proceduresteprecord',
            index=models.Index(fields=['procedure_id', 'position'], name='idx_step_procedure'),
        ),
        migrations.AddIndex(
            model_name='imagerecord',
            index=models.Index(fields=['image_id', 'version'], name='idx_image_versions'),
        ),
        migrations.AddConstraint(
            model_name='imagerecord',
            constraint=models.UniqueConstraint(fields=('image_id', 'version'), name='uniq_image_version'),
        ),
    ]
