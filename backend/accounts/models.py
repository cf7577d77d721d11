from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Rider account; the id is the owner id stamped on ride plans and content."""

    display_name = models.CharField(max_length=80, blank=True, default='')

    class Meta:
        db_table = 'users'

    def __str__(self):
        return self.display_name or self.username
