"""Prometheus counters for logins, refreshes and external identity callbacks."""

from prometheus_client import Counter

LOGINS = Counter(
    "account_logins_total",
    "Login attempts by method (password, external) and outcome.",
    ["method", "outcome"],
)
TOKEN_REFRESHES = Counter(
    "account_token_refresh_total",
    "Refresh token rotations by outcome.",
    ["outcome"],
)
IDENTITY_CALLBACKS = Counter(
    "identity_callbacks_total",
    "External provider callbacks by auth client uri and outcome.",
    ["client", "outcome"],
)
