from typing import Optional

from pydantic import BaseModel

from models.entities.couchbase.transactions import FeePolicy
from utils import auth, env, log
from utils.env import EnvVarSpec

logger = log.get_logger(__name__)

# Set to True to enable authentication
USE_AUTH = True

#### Types ####

class HttpServerConf(BaseModel):
    host: str
    port: int
    autoreload: bool

class StripeConf(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

#### Env Vars ####

## Auth ##

AUTH_OIDC_JWK_URL = EnvVarSpec(id="AUTH_OIDC_JWK_URL", is_optional=True)
AUTH_OIDC_AUDIENCE = EnvVarSpec(id="AUTH_OIDC_AUDIENCE", is_optional=True)
AUTH_OIDC_ISSUER = EnvVarSpec(id="AUTH_OIDC_ISSUER", is_optional=True)

## Logging ##

LOG_LEVEL = EnvVarSpec(id="LOG_LEVEL", default="INFO")
ENVIRONMENT = EnvVarSpec(id="ENVIRONMENT", default="development")

## HTTP ##

HTTP_HOST = EnvVarSpec(id="HTTP_HOST", default="0.0.0.0")

HTTP_PORT = EnvVarSpec(id="HTTP_PORT", default="8000", parse=int, type=(int, ...))

HTTP_AUTORELOAD = EnvVarSpec(
    id="HTTP_AUTORELOAD",
    parse=lambda x: x.lower() == "true",
    default="false",
    type=(bool, ...),
)

HTTP_EXPOSE_ERRORS = EnvVarSpec(
    id="HTTP_EXPOSE_ERRORS",
    default="false",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

## Storage ##

STORAGE_BACKEND = EnvVarSpec(
    id="STORAGE_BACKEND",
    default="couchbase",
    parse=lambda x: x.lower(),
)

## Stripe ##

STRIPE_SECRET_KEY = EnvVarSpec(id="STRIPE_SECRET_KEY", is_optional=True, is_secret=True)
STRIPE_WEBHOOK_SECRET = EnvVarSpec(id="STRIPE_WEBHOOK_SECRET", is_optional=True, is_secret=True)

WEB_APP_URL = EnvVarSpec(id="WEB_APP_URL", default="http://localhost:3000")

## Bidding & fees ##

BID_INCREMENT_CENTS = EnvVarSpec(
    id="BID_INCREMENT_CENTS",
    default="1",
    parse=int,
    type=(int, ...),
)

PAYMENT_FEE_BPS = EnvVarSpec(
    id="PAYMENT_FEE_BPS",
    default="290",
    parse=int,
    type=(int, ...),
)

PAYMENT_FEE_FIXED_CENTS = EnvVarSpec(
    id="PAYMENT_FEE_FIXED_CENTS",
    default="30",
    parse=int,
    type=(int, ...),
)

## Housekeeping ##

HOUSEKEEPING_INTERVAL_SECONDS = EnvVarSpec(
    id="HOUSEKEEPING_INTERVAL_SECONDS",
    default="60",
    parse=int,
    type=(int, ...),
)

#### Validation ####
VALIDATED_ENV_VARS = [
    HTTP_AUTORELOAD,
    HTTP_EXPOSE_ERRORS,
    HTTP_PORT,
    LOG_LEVEL,
    STORAGE_BACKEND,
    BID_INCREMENT_CENTS,
    PAYMENT_FEE_BPS,
    PAYMENT_FEE_FIXED_CENTS,
    HOUSEKEEPING_INTERVAL_SECONDS,
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
]

# Only validate auth vars if USE_AUTH is True
if USE_AUTH:
    VALIDATED_ENV_VARS.extend([
        AUTH_OIDC_JWK_URL,
        AUTH_OIDC_AUDIENCE,
        AUTH_OIDC_ISSUER,
    ])

def validate() -> bool:
    if not env.validate(VALIDATED_ENV_VARS):
        return False
    if get_storage_backend() not in ("couchbase", "in_memory"):
        logger.error("STORAGE_BACKEND must be 'couchbase' or 'in_memory'")
        return False
    if get_bid_increment_cents() < 1:
        logger.error("BID_INCREMENT_CENTS must be at least 1")
        return False
    return True

#### Getters ####

def get_auth_config() -> auth.AuthClientConfig:
    """Get authentication configuration."""
    return auth.AuthClientConfig(
        jwk_url=env.parse(AUTH_OIDC_JWK_URL),
        audience=env.parse(AUTH_OIDC_AUDIENCE),
        issuer=env.parse(AUTH_OIDC_ISSUER),
    )

def get_http_expose_errors() -> bool:
    return env.parse(HTTP_EXPOSE_ERRORS)

def get_log_level() -> str:
    return env.parse(LOG_LEVEL)

def get_environment() -> str:
    return env.parse(ENVIRONMENT)

def get_http_conf() -> HttpServerConf:
    return HttpServerConf(
        host=env.parse(HTTP_HOST),
        port=env.parse(HTTP_PORT),
        autoreload=env.parse(HTTP_AUTORELOAD),
    )

def get_storage_backend() -> str:
    return env.parse(STORAGE_BACKEND)

def get_stripe_conf() -> StripeConf:
    return StripeConf(
        secret_key=env.parse(STRIPE_SECRET_KEY),
        webhook_secret=env.parse(STRIPE_WEBHOOK_SECRET),
    )

def get_web_app_url() -> str:
    return env.parse(WEB_APP_URL)

def get_bid_increment_cents() -> int:
    return env.parse(BID_INCREMENT_CENTS)

def get_fee_policy() -> FeePolicy:
    return FeePolicy(
        percent_bps=env.parse(PAYMENT_FEE_BPS),
        fixed_cents=env.parse(PAYMENT_FEE_FIXED_CENTS),
    )

def get_housekeeping_interval_seconds() -> int:
    return max(1, env.parse(HOUSEKEEPING_INTERVAL_SECONDS))
