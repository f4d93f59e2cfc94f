from django.apps import AppConfig


class RadorderConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'radorder'
    verbose_name = 'Radiology order intake'
