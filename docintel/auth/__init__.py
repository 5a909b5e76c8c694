from docintel.auth.identity import (
    CurrentIdentity,
    HeaderIdentityProvider,
    Identity,
    IdentityProvider,
    JWTIdentityProvider,
    get_current_identity,
    get_identity_provider,
)

__all__ = [
    "CurrentIdentity", "Identity", "IdentityProvider",
    "HeaderIdentityProvider", "JWTIdentityProvider",
    "get_current_identity", "get_identity_provider",
]
