"""
Generate the secrets a Hookgate deployment needs.

Usage:
    python scripts/generate_secrets.py
    python scripts/generate_secrets.py --webhook-secrets 4
    python scripts/generate_secrets.py --env >> .env
"""
import argparse
import secrets

from hookgate.utils.encryption import fingerprint_secret, generate_encryption_key
from hookgate.schemas.webhook_payloads import WebhookEndpoint


def main():
    parser = argparse.ArgumentParser(description="Generate Hookgate secrets")
    parser.add_argument(
        "--webhook-secrets", type=int, default=len(WebhookEndpoint),
        help="How many webhook signing secrets to generate (one per endpoint by default)",
    )
    parser.add_argument("--env", action="store_true", help="Print only .env lines")
    args = parser.parse_args()

    encryption_key = generate_encryption_key()
    internal_token = secrets.token_urlsafe(32)
    jwt_secret = secrets.token_urlsafe(48)

    if args.env:
        print(f"SECRET_ENCRYPTION_KEY={encryption_key}")
        print(f"INTERNAL_API_TOKEN={internal_token}")
        print(f"SESSION_JWT_SECRET={jwt_secret}")
        return

    print("=== Environment ===")
    print(f"SECRET_ENCRYPTION_KEY={encryption_key}")
    print(f"INTERNAL_API_TOKEN={internal_token}")
    print(f"SESSION_JWT_SECRET={jwt_secret}")
    print()
    print("Keep SECRET_ENCRYPTION_KEY stable: stored webhook secrets cannot be read without it.")
    print()

    endpoints = list(WebhookEndpoint)
    print("=== Webhook signing secrets (register via POST /api/webhook-secrets) ===")
    for i in range(args.webhook_secrets):
        secret = secrets.token_hex(32)
        label = endpoints[i].value if i < len(endpoints) else f"secret-{i + 1}"
        print(f"{label:<20} {secret}  (fingerprint {fingerprint_secret(secret)})")


if __name__ == "__main__":
    main()
