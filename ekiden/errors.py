# ekiden: async trading client for the ekiden exchange
# Copyright (C) 2025-present  ekiden contributors

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.

# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Client error taxonomy.

"""


class EkidenError(Exception):
    "Generic ekiden client issue"


class ConfigError(EkidenError):
    'Misconfigured settings: bad url, timeout or a missing key.'


class CryptoError(EkidenError):
    'Bad key material encoding or a signing failure.'


class AuthError(EkidenError):
    '''
    Not authenticated for the requested role or the authorization
    challenge was rejected.

    '''


class ApiError(EkidenError):
    '''
    Non-2xx response from the ReST api.

    The raw response body is kept verbatim since the server's error
    schema is not stable across endpoints.

    '''
    def __init__(
        self,
        status: int,
        body: str,
    ) -> None:
        super().__init__(f'API error {status}: {body}')
        self.status: int = status
        self.body: str = body


class DecodeError(EkidenError):
    'Response, frame or canonical-bytes shape mismatch.'


class TransportError(EkidenError):
    'Connection level (http or websocket) failure.'
