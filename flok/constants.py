from __future__ import annotations

import logging
from pathlib import Path

HTTP_METHODS = {
    "get",
    "post",
    "put",
    "patch",
    "delete",
}
WRITE_METHODS = HTTP_METHODS - {"get"}

LOGGER = logging.getLogger("flok.graph")
AUTH_LOGGER = logging.getLogger("flok.auth")
APP_VERSION = "0.1.0"

GRAPH_BASE_URL = "https://graph.microsoft.com"
DEFAULT_API_VERSION = "v1.0"
DEFAULT_ACCOUNT = "default"

DEFAULT_SCOPES = [
    "Mail.ReadWrite",
    "Calendars.ReadWrite",
    "Contacts.ReadWrite",
    "Files.ReadWrite",
    "User.Read",
    "offline_access",
]

FLOK_HOME = Path.home() / ".flok"
DEFAULT_TOKEN_STORE_PATH = FLOK_HOME / "tokens.json"
DEFAULT_ACCOUNT_PATH = FLOK_HOME / "current-account"
