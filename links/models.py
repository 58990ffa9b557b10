from django.db import models


# Relations are read through their '<name>_id' columns only (posted_by_id, user_id, link_id); the
# resolvers look the related entity up through the request's loaders, never through the ORM's
# lazy relation descriptors, which cannot be used from async code.

class LinkModel(models.Model):
    url = models.URLField(max_length=2048)
    description = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)
    posted_by = models.ForeignKey('users.UserModel', null=True, blank=True,
                                  on_delete=models.SET_NULL, related_name='links')

    def __str__(self):
        return self.url


class VoteModel(models.Model):
    # null for anonymous votes
    user = models.ForeignKey('users.UserModel', null=True, blank=True,
                             on_delete=models.SET_NULL, related_name='votes')
    link = models.ForeignKey('links.LinkModel', on_delete=models.CASCADE, related_name='votes')
