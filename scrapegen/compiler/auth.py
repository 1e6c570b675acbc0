"""
Builders for the credential blocks of a scrape config.

Certificates, keys, passwords and tokens are always referenced by mount path.
Only values the Prometheus schema cannot read from a file (OAuth2 client id,
basic auth username) are fetched eagerly through the SecretResolver.
"""

import logging
from typing import Optional

from .errors import CompileError, UnsupportedFeatureError, ValidationError
from .models import (
    Authorization,
    BasicAuth,
    BasicAuthRef,
    OAuth2,
    OAuth2Config,
    SafeAuthorization,
    SafeTLSConfig,
    SecretKeySelector,
    TLSConfig,
)
from .secrets import SecretRef, SecretResolver

logger = logging.getLogger(__name__)

DEFAULT_AUTHORIZATION_TYPE = "Bearer"


class AuthBuilder:
    """Turns endpoint credential references into resolved HTTP client blocks."""

    def __init__(self, secrets: SecretResolver):
        self.secrets = secrets

    def _file(self, namespace: str, ref: SecretRef, field: str) -> str:
        try:
            return self.secrets.resolve_as_file(namespace, ref)
        except CompileError as e:
            raise e.with_context(field=field) from e

    def _value(self, namespace: str, ref: SecretRef, field: str) -> str:
        try:
            return self.secrets.resolve_as_value(namespace, ref)
        except CompileError as e:
            raise e.with_context(field=field) from e

    def generate_safe_tls(self, namespace: str, tls: SafeTLSConfig) -> TLSConfig:
        """Build a TLS block whose CA, certificate and key point at mounted files."""
        tc = TLSConfig(insecure_skip_verify=tls.insecure_skip_verify)

        if tls.ca is not None:
            tc.ca_file = self._file(namespace, tls.ca, "tlsConfig.ca")
        if tls.cert is not None:
            tc.cert_file = self._file(namespace, tls.cert, "tlsConfig.cert")
        if tls.key_secret is not None:
            tc.key_file = self._file(namespace, tls.key_secret, "tlsConfig.keySecret")

        if bool(tc.cert_file) != bool(tc.key_file):
            raise ValidationError(
                "client certificate and key must be set together",
                field="tlsConfig.cert" if tc.key_file else "tlsConfig.keySecret",
            )
        if tls.server_name:
            tc.server_name = tls.server_name
        return tc

    def generate_oauth2(self, namespace: str, oauth2: Optional[OAuth2]) -> Optional[OAuth2Config]:
        """
        Build an OAuth2 block.

        The client id has no file form and is fetched eagerly; any failure is
        raised rather than emitting partial credentials.
        """
        if oauth2 is None:
            return None
        if not oauth2.token_url:
            raise ValidationError("oauth2 requires a token URL", field="oauth2.tokenUrl")

        client_id = self._value(namespace, oauth2.client_id, "oauth2.clientId")
        logger.debug(f"Resolved oauth2 client id for {namespace} from {oauth2.client_id.kind.value}")

        return OAuth2Config(
            client_id=client_id,
            client_secret_file=self._file(namespace, oauth2.client_secret, "oauth2.clientSecret"),
            token_url=oauth2.token_url,
            scopes=list(oauth2.scopes),
            endpoint_params=dict(oauth2.endpoint_params),
        )

    def generate_safe_authorization(
        self, namespace: str, auth: Optional[SafeAuthorization]
    ) -> Optional[Authorization]:
        """Build an authorization block; the type defaults to Bearer."""
        if auth is None:
            return None
        auth_type = (auth.type or DEFAULT_AUTHORIZATION_TYPE).strip()
        if auth_type.lower() == "basic":
            raise UnsupportedFeatureError(
                "authorization type Basic is not supported, use basicAuth instead",
                field="authorization.type",
            )
        az = Authorization(type=auth_type)
        if auth.credentials is not None:
            az.credentials_file = self._file(namespace, auth.credentials, "authorization.credentials")
        return az

    def generate_basic_auth(self, namespace: str, basic: Optional[BasicAuthRef]) -> Optional[BasicAuth]:
        """Build a basic auth block with an inline username and a password file."""
        if basic is None:
            return None
        return BasicAuth(
            username=self._value(namespace, basic.username, "basicAuth.username"),
            password_file=self._file(namespace, basic.password, "basicAuth.password"),
        )

    def generate_bearer_token_file(
        self, namespace: str, selector: Optional[SecretKeySelector]
    ) -> Optional[str]:
        if selector is None:
            return None
        return self._file(namespace, selector, "bearerTokenSecret")
