from django.db import models


# A User here is a plain model rather than an extension of Django's auth User, since the schema
# wants 'name' and 'email' rather than 'username'. Passwords are kept as Django password hashes
# (see users.schema.CreateUser), never as the submitted text.

class UserModel(models.Model):
    name = models.CharField(max_length=150)
    email = models.EmailField(unique=True)
    password = models.CharField(max_length=128)

    def __str__(self):
        return self.email
