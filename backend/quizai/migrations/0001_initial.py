from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='StoredValue',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('namespace', models.CharField(db_index=True, help_text='user:<id> / anon:<ip> / client:<id>', max_length=255)),
                ('key', models.CharField(max_length=200)),
                ('value', models.TextField(help_text='JSON 문자열')),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'kv_stored_value',
                'unique_together': {('namespace', 'key')},
                'indexes': [models.Index(fields=['namespace', 'updated_at'], name='kv_ns_updated_idx')],
            },
        ),
    ]
