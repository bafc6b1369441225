"""Centralized constants for the lark CLI auth core."""

# Binary name used in remediation commands
CLI_NAME = "lark"

# Base URLs
FEISHU_BASE_URL = "https://open.feishu.cn"
LARK_BASE_URL = "https://open.larksuite.com"
DEFAULT_BASE_URL = FEISHU_BASE_URL

PLATFORM_BASE_URLS = {
    'feishu': FEISHU_BASE_URL,
    'lark': LARK_BASE_URL,
}

# Token endpoint paths
TENANT_TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
USER_AUTHORIZE_PATH = "/open-apis/authen/v1/authorize"
USER_TOKEN_PATH = "/open-apis/authen/v2/oauth/token"

# Token types
TOKEN_TYPE_TENANT = 'tenant'
TOKEN_TYPE_USER = 'user'
TOKEN_TYPE_AUTO = 'auto'

# Cached tokens must outlive now + margin to be reused
TOKEN_EXPIRY_MARGIN_SECONDS = 60
DEFAULT_HTTP_TIMEOUT = 30

# OAuth
OFFLINE_ACCESS_SCOPE = "offline_access"
DEFAULT_USER_ACCOUNT = "default"
DEFAULT_OAUTH_PORT = 17653
DEFAULT_OAUTH_CALLBACK_PATH = "/oauth/callback"
DEFAULT_LOGIN_TIMEOUT = 120

# Keychain
KEYRING_SERVICE = "lark-cli"
KIND_APP_SECRET = 'app-secret'
KIND_USER_REFRESH_TOKEN = 'user-refresh-token'
KIND_USER_ACCESS_TOKEN = 'user-access-token'

KEYRING_BACKEND_FILE = 'file'
KEYRING_BACKEND_KEYCHAIN = 'keychain'
KEYRING_BACKEND_AUTO = 'auto'

# Lark business codes
CODE_USER_SCOPE_INSUFFICIENT = 99991679
RATE_LIMIT_CODES = frozenset({99991400})
