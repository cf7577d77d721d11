import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='RidePlan',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=200)),
                ('start_location', models.CharField(max_length=200)),
                ('end_location', models.CharField(max_length=200)),
                ('stops', models.JSONField(blank=True, default=list)),
                ('transport_mode', models.CharField(choices=[('bike', 'Bike'), ('car', 'Car'), ('other', 'Other')], default='bike', max_length=10)),
                ('budget_tier', models.CharField(choices=[('budget', 'Budget'), ('mid', 'Mid'), ('luxury', 'Luxury')], default='mid', max_length=10)),
                ('status', models.CharField(choices=[('planned', 'Planned'), ('ongoing', 'Ongoing'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='planned', max_length=20)),
                ('scheduled_start', models.CharField(blank=True, default='', max_length=19)),
                ('scheduled_end', models.CharField(blank=True, default='', max_length=19)),
                ('notes', models.TextField(blank=True, default='')),
                ('media_intent', models.TextField(blank=True, default='')),
                ('timeline_updates', models.JSONField(blank=True, default=list)),
                ('version', models.PositiveIntegerField(default=1)),
                ('content_version', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='ride_plans', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'ride_plans',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='ContentItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('kind', models.CharField(choices=[('photo', 'Photo'), ('video', 'Video'), ('blog', 'Blog')], max_length=10)),
                ('title', models.CharField(max_length=200)),
                ('url', models.URLField(blank=True, default='', max_length=1000)),
                ('body', models.TextField(blank=True, default='')),
                ('caption', models.TextField(blank=True, default='')),
                ('version', models.PositiveIntegerField(default=1)),
                ('created_at', models.DateTimeField()),
                ('updated_at', models.DateTimeField()),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='ride_content', to=settings.AUTH_USER_MODEL)),
                ('ride', models.ForeignKey(db_constraint=False, on_delete=django.db.models.deletion.DO_NOTHING, related_name='content_items', to='rides.rideplan')),
            ],
            options={
                'db_table': 'ride_content_items',
                'ordering': ['-created_at', '-id'],
            },
        ),
    ]
