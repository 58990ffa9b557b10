# newsgraph -- users/schema.py
#
# Copyright © 2017 Sean Bolton.
#
# Permission is hereby granted, free of charge, to any person obtaining
# a copy of this software and associated documentation files (the
# "Software"), to deal in the Software without restriction, including
# without limitation the rights to use, copy, modify, merge, publish,
# distribute, sublicense, and/or sell copies of the Software, and to
# permit persons to whom the Software is furnished to do so, subject to
# the following conditions:
#
# The above copyright notice and this permission notice shall be
# included in all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
# EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF
# MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
# NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE
# LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION
# OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION
# WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.


import logging
import re

from asgiref.sync import sync_to_async
from django.contrib.auth.hashers import check_password, make_password
from django.db.models import Q

import graphene
from graphene_django import DjangoObjectType

from newsgraph.errors import (AuthenticationError, DuplicateKeyError, StoreError, ValidationError,
                              store_errors)
from newsgraph.store import normalize_id
from users.models import UserModel


logger = logging.getLogger(__name__)


# ========== authentication ==========

# The token scheme is the tutorial's, not a real one: the token handed out by signinUser is just
# 'token-<email>', and the client sends it back as 'Authorization: bearer token-<email>'.
HEADER_REGEX = re.compile(r'^bearer token-(.+)$', re.IGNORECASE)


def auth_token_for(user):
    return 'token-{}'.format(user.email)


async def get_user_from_auth_token(request, users):
    """Return the user named by the request's Authorization header, or None.

    A missing or malformed header, an unknown email and a failed lookup all mean "no
    authenticated user"; none of them is an error for the request.
    """
    meta = getattr(request, 'META', None) or {}
    auth = meta.get('HTTP_AUTHORIZATION', None)
    if not auth:
        return None
    match = HEADER_REGEX.match(auth.strip())
    if not match:
        return None
    try:
        return await users.find_one(email=match.group(1))
    except StoreError as e:
        logger.warning('Could not authenticate request: %s', e)
        return None


# ========== User ==========

class User(DjangoObjectType):
    class Meta:
        model = UserModel
        fields = ('id', 'name', 'email')

    id = graphene.ID(required=True)
    email = graphene.String()
    votes = graphene.NonNull(graphene.List(graphene.NonNull('links.schema.Vote')))

    def resolve_id(parent, info):
        return normalize_id(parent)

    @store_errors('User.votes')
    async def resolve_votes(parent, info):
        return await info.context.store.votes.find(Q(user_id=parent.pk))


class AUTH_PROVIDER_EMAIL(graphene.InputObjectType):
    email = graphene.String(required=True)
    password = graphene.String(required=True)


class AuthProviderSignupData(graphene.InputObjectType):
    email = graphene.InputField(AUTH_PROVIDER_EMAIL)


class SigninPayload(graphene.ObjectType):
    token = graphene.String()
    user = graphene.Field(User)


class CreateUser(graphene.Mutation):
    # mutation {
    #   createUser(name: "Foo Bar",
    #              authProvider: { email: { email: "foo@bar.com", password: "abc123" } }) {
    #     id
    #   }
    # }
    class Arguments:
        name = graphene.String(required=True)
        auth_provider = graphene.Argument(AuthProviderSignupData, required=True)

    Output = User

    @store_errors('Mutation.createUser')
    async def mutate(root, info, name, auth_provider):
        credentials = auth_provider.get('email')
        if not credentials:
            raise ValidationError('User validation error: email credentials are required.',
                                  'authProvider')
        email = credentials.get('email')
        users = info.context.store.users
        if await users.find_one(email=email) is not None:
            raise ValidationError('A user with that email address already exists!', 'email')
        # The submitted password is never stored, only its salted hash.
        password = await sync_to_async(make_password)(credentials.get('password'))
        try:
            user = await users.insert_one({
                'name': name,
                'email': email,
                'password': password,
            })
        except DuplicateKeyError:
            # another request registered the address after the check above
            raise ValidationError('A user with that email address already exists!', 'email')
        info.context.loaders.user.prime(user.pk, user)
        return user


class SigninUser(graphene.Mutation):
    # mutation {
    #   signinUser(email: { email: "foo@bar.com", password: "abc123" }) {
    #     token
    #     user { id }
    #   }
    # }
    class Arguments:
        email = graphene.Argument(AUTH_PROVIDER_EMAIL)

    Output = SigninPayload

    @store_errors('Mutation.signinUser')
    async def mutate(root, info, email=None):
        address = email and email.get('email')
        user = None
        if address:
            user = await info.context.store.users.find_one(email=address)
        valid = user is not None and await sync_to_async(check_password)(
            email.get('password'), user.password)
        if not valid:
            logger.warning('Sign-in failed for %r', address)
            raise AuthenticationError('Invalid username or password!')
        return SigninPayload(token=auth_token_for(user), user=user)


class Mutation(object):
    create_user = CreateUser.Field()
    signin_user = SigninUser.Field()
