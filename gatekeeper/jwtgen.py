"""
Token issuance for clients of the gatekeeper (offline, developer/ops tool).
Signs sub/iat/exp with the client's private key; the matching public key goes into the
service's public_keys in the services file.
"""
from datetime import datetime, timedelta, timezone

import click
import jwt
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from gatekeeper.config import parse_duration
from gatekeeper.keys import load_private_key_from_pem, serialize_public_key

ISSUER = "gatekeeper-jwtgen"

# JWS alg per EC curve (RFC 7518 §3.4)
_EC_CURVE_ALGORITHMS = {
    "secp256r1": "ES256",
    "secp384r1": "ES384",
    "secp521r1": "ES512",
}


def signing_algorithm(private_key) -> str:
    """RS256 for RSA keys, the curve's ES alg for EC keys."""
    if isinstance(private_key, RSAPrivateKey):
        return "RS256"
    if isinstance(private_key, EllipticCurvePrivateKey):
        try:
            return _EC_CURVE_ALGORITHMS[private_key.curve.name]
        except KeyError:
            raise ValueError(f"Unsupported EC curve: {private_key.curve.name}") from None
    raise ValueError("Private key must be RSA or EC")


def issue_token(private_key, subject: str, max_age: timedelta, now: datetime | None = None) -> str:
    """Signed JWT with sub=subject, iat=now, exp=now+max_age."""
    if now is None:
        now = datetime.now(timezone.utc)
    payload = {
        "iss": ISSUER,
        "sub": subject,
        "iat": int(now.timestamp()),
        "exp": int((now + max_age).timestamp()),
    }
    token = jwt.encode(payload, private_key, algorithm=signing_algorithm(private_key), headers={"typ": "JWT"})
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    return token


@click.command()
@click.option("--private-key", "private_key_file", type=click.File("rb"), required=True,
              help="Private key (PEM) for signing the token.")
@click.option("--subject", "--private-key-user", default="private-key-user", show_default=True,
              help="Service id used as sub in the token.")
@click.option("--max-age", default="1h", show_default=True, help="Token lifetime (e.g. 90s, 15m, 1h).")
@click.option("--show-public-key", is_flag=True, help="Print the public key PEM for the services file instead.")
def main(private_key_file, subject, max_age, show_public_key):
    """Print an Authorization header with a freshly signed token."""
    try:
        private_key = load_private_key_from_pem(private_key_file.read())
    except (ValueError, TypeError) as e:
        raise click.ClickException(f"Could not read private key: {e}")
    if show_public_key:
        click.echo(serialize_public_key(private_key.public_key()), nl=False)
        return
    try:
        lifetime = parse_duration(max_age)
        token = issue_token(private_key, subject, lifetime)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"Authorization: Bearer {token}")


if __name__ == "__main__":
    main()
