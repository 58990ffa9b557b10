# newsgraph -- users/tests.py
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


from django.contrib.auth.hashers import check_password, make_password
from django.test import TestCase, override_settings

from newsgraph.context import RequestContext
from newsgraph.errors import StoreError, format_error
from newsgraph.pubsub import EventBus
from newsgraph.schema import schema
from newsgraph.store import Store
from newsgraph.utils import format_graphql_errors, quiet_logging, unquiet_logging
from .models import UserModel
from .schema import get_user_from_auth_token


# Sign-up and sign-in hash passwords, and the default hasher is slow.
FAST_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']


def setUpModule():
    quiet_logging()

def tearDownModule():
    unquiet_logging()


# ========== utility functions ==========

def create_test_user(name=None, password=None, email=None):
    user = UserModel.objects.create(
        name=name or 'Test User',
        password=make_password(password or 'abc123'),
        email=email or 'test@user.com'
    )
    return user


async def execute(query, variables=None, store=None):
    context = RequestContext(store or Store(), EventBus())
    return await schema.execute_async(query, variable_values=variables, context_value=context)


class FailingUsers(object):
    async def find_one(self, **lookup):
        raise StoreError('users find_one failed: timed out')


# ========== request authentication tests ==========

@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class GetUserTests(TestCase):
    def setUp(self):
        self.users = Store().users

    async def test_get_user_token_missing_or_invalid(self):
        """get_user_from_auth_token() with no or invalid HTTP_AUTHORIZATION header should
        return None
        """
        class AuthEmpty(object):
            META = {}
        self.assertIsNone(await get_user_from_auth_token(AuthEmpty, self.users))
        class AuthInvalid(object):
            META = {'HTTP_AUTHORIZATION': 'ArgleBargle'}
        self.assertIsNone(await get_user_from_auth_token(AuthInvalid, self.users))
        class AuthNoToken(object):
            META = {'HTTP_AUTHORIZATION': 'Bearer test@user.com'}
        self.assertIsNone(await get_user_from_auth_token(AuthNoToken, self.users))

    async def test_get_user_token_valid(self):
        """get_user_from_auth_token() with valid HTTP_AUTHORIZATION header should return user"""
        user = await UserModel.objects.acreate(name='Test User', email='test@user.com',
                                               password='unused')
        for scheme in ('bearer', 'Bearer'):
            class AuthValid(object):
                META = {'HTTP_AUTHORIZATION': '{} token-test@user.com'.format(scheme)}
            self.assertEqual(await get_user_from_auth_token(AuthValid, self.users), user)

    async def test_get_user_token_wrong(self):
        """a well-formed header naming an unknown email address means no user"""
        await UserModel.objects.acreate(name='Test User', email='test@user.com',
                                        password='unused')
        class AuthWrong(object):
            META = {'HTTP_AUTHORIZATION': 'bearer token-nobody@user.com'}
        self.assertIsNone(await get_user_from_auth_token(AuthWrong, self.users))

    async def test_get_user_store_failure(self):
        """a failed lookup leaves the request unauthenticated instead of failing it"""
        class AuthValid(object):
            META = {'HTTP_AUTHORIZATION': 'bearer token-test@user.com'}
        self.assertIsNone(await get_user_from_auth_token(AuthValid, FailingUsers()))


# ========== createUser mutation tests ==========

@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class CreateUserTests(TestCase):
    def setUp(self):
        self.query = '''
          mutation CreateUserMutation($name: String!, $authProvider: AuthProviderSignupData!) {
            createUser(name: $name, authProvider: $authProvider) {
              id
              name
              email
            }
          }
        '''
        self.variables = {
            'name': 'Jim Kirk',
            'authProvider': {
                'email': {
                    'email': 'kirk@example.com',
                    'password': 'abc123',
                }
            },
        }

    async def test_create_user(self):
        """sucessfully create a user"""
        result = await execute(self.query, self.variables)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        # check that the user was created properly
        user = await UserModel.objects.aget(email='kirk@example.com')
        expected = {
            'createUser': {
                'id': str(user.pk),
                'name': 'Jim Kirk',
                'email': 'kirk@example.com',
            }
        }
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))
        self.assertEqual(user.name, 'Jim Kirk')
        self.assertNotEqual(user.password, 'abc123')
        self.assertTrue(check_password('abc123', user.password))

    async def test_create_user_duplicate(self):
        """should not be able to create two users with the same email"""
        result = await execute(self.query, self.variables)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        # now try to create a second one
        self.variables['name'] = 'Just Spock to Humans'
        self.variables['authProvider']['email']['password'] = '26327790.8685354193060378'
        # -- email address stays the same
        result = await execute(self.query, self.variables)
        self.assertIsNotNone(result.errors,
                             msg='Creating user with duplicate email should have failed')
        self.assertIn('user with that email address already exists', repr(result.errors))
        self.assertEqual(format_error(result.errors[0])['field'], 'email')
        expected = { 'createUser': None } # empty result
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))
        self.assertEqual(await UserModel.objects.acount(), 1)

    async def test_create_user_duplicate_race(self):
        """a duplicate that slips past the lookup is still reported on 'email'"""
        await execute(self.query, self.variables)
        store = Store()
        async def find_one(**lookup):
            # as if the other request had not committed yet
            return None
        store.users.find_one = find_one
        self.variables['name'] = 'Just Spock to Humans'
        result = await execute(self.query, self.variables, store=store)
        self.assertIsNotNone(result.errors,
                             msg='Creating user with duplicate email should have failed')
        self.assertIn('user with that email address already exists', repr(result.errors))
        self.assertEqual(format_error(result.errors[0])['field'], 'email')
        self.assertEqual(result.data, {'createUser': None})
        self.assertEqual(await UserModel.objects.acount(), 1)

    async def test_create_user_without_credentials(self):
        self.variables['authProvider'] = {}
        result = await execute(self.query, self.variables)
        self.assertIsNotNone(result.errors,
                             msg='Creating user without credentials should have failed')
        self.assertEqual(format_error(result.errors[0])['field'], 'authProvider')
        self.assertEqual(await UserModel.objects.acount(), 0)


# ========== signinUser mutation tests ==========

@override_settings(PASSWORD_HASHERS=FAST_HASHERS)
class SigninUserTests(TestCase):
    def setUp(self):
        self.user = create_test_user(password='abc123')
        self.query = '''
          mutation SigninUserMutation($email: AUTH_PROVIDER_EMAIL) {
            signinUser(email: $email) {
              token
              user { name }
            }
          }
        '''

    async def test_signin_user(self):
        """normal user sign-in"""
        variables = {
            'email': {
                'email': self.user.email,
                'password': 'abc123',
            }
        }
        expected = {
            'signinUser': {
                'token': 'token-test@user.com',
                'user': {
                    'name': self.user.name,
                }
            }
        }
        result = await execute(self.query, variables)
        self.assertIsNone(result.errors, msg=format_graphql_errors(result.errors))
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))
        # the token authenticates later requests
        class AuthSignedIn(object):
            META = {'HTTP_AUTHORIZATION': 'bearer ' + result.data['signinUser']['token']}
        user = await get_user_from_auth_token(AuthSignedIn, Store().users)
        self.assertEqual(user, self.user)

    async def test_signin_user_not_found(self):
        """unsuccessful sign-in: user not found"""
        variables = {
            'email': {
                'email': 'xxx' + self.user.email, # unknown email address
                'password': 'irrelevant',
            }
        }
        expected = {'signinUser': None} # empty result
        result = await execute(self.query, variables)
        self.assertIsNotNone(result.errors,
                             msg='Sign-in of user with unknown email should have failed')
        self.assertIn('Invalid username or password', repr(result.errors))
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))

    async def test_signin_user_bad_password(self):
        """unsuccessful sign-in: incorrect password"""
        variables = {
            'email': {
                'email': self.user.email,
                'password': 'xxxabc123', # incorrect password
            }
        }
        expected = {'signinUser': None} # empty result
        result = await execute(self.query, variables)
        self.assertIsNotNone(result.errors,
                             msg='Sign-in of user with incorrect password should have failed')
        self.assertIn('Invalid username or password', repr(result.errors))
        self.assertEqual(result.data, expected, msg='\n'+repr(expected)+'\n'+repr(result.data))

    async def test_signin_user_without_credentials(self):
        result = await execute(self.query, {})
        self.assertIsNotNone(result.errors, msg='Sign-in without credentials should have failed')
        self.assertIn('Invalid username or password', repr(result.errors))
        # the message is meant for the client, so it is not masked
        self.assertEqual(format_error(result.errors[0])['message'], 'Invalid username or password!')
