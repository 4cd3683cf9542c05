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

'''
ekiden: async trading client for the ekiden exchange.

'''
from .api import (
    Client,
    RequestConfig,
    open_client,
)
from .auth import (
    KeyPair,
    Role,
    SessionManager,
)
from .config import EkidenConfig
from .errors import (
    ApiError,
    AuthError,
    ConfigError,
    CryptoError,
    DecodeError,
    EkidenError,
    TransportError,
)
from .schemas import (
    OrderCancel,
    OrderCancelAction,
    OrderCancelAllAction,
    OrderCreate,
    OrderCreateAction,
    Pagination,
    TimeInForce,
)
from .signing import (
    Signature,
    sign_intent,
    verify_intent,
)
from .ws import (
    EventBus,
    Lagged,
    Subscription,
    channels,
    open_event_bus,
)

__all__ = [
    'ApiError',
    'AuthError',
    'Client',
    'ConfigError',
    'CryptoError',
    'DecodeError',
    'EkidenConfig',
    'EkidenError',
    'EventBus',
    'KeyPair',
    'Lagged',
    'OrderCancel',
    'OrderCancelAction',
    'OrderCancelAllAction',
    'OrderCreate',
    'OrderCreateAction',
    'Pagination',
    'RequestConfig',
    'Role',
    'SessionManager',
    'Signature',
    'Subscription',
    'TimeInForce',
    'TransportError',
    'channels',
    'open_client',
    'open_event_bus',
    'sign_intent',
    'verify_intent',
]
