#!/usr/bin/env python3
"""
QRSeal Command Line Interface

Usage:
    qrseal keygen [--alg ES256|RS256|EdDSA] [--kid <id>] [--private-out <file>] [--public-out <file>]
    qrseal sign --key <file> --payload <json|file> [--expiry <seconds>] [--base-url <url>]
    qrseal verify --public-key <file> --token <token|file> [--now <epoch>]
    qrseal encode --file <file>
"""

import argparse
import json
import os
import sys


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def read_text(path: str) -> str:
    with open(path, 'r', encoding='utf-8') as f:
        return f.read()


def write_text(text: str, path: str):
    with open(path, 'w', encoding='utf-8') as f:
        f.write(text)


def _inline_or_file(value: str) -> str:
    """Arguments may be given inline or as a path to a file holding them."""
    if os.path.isfile(value):
        return read_text(value).strip()
    return value.strip()


def cmd_keygen(args):
    """Generate a signing key pair."""
    from qrseal import generate_signing_key

    key = generate_signing_key(args.alg, kid=args.kid)
    private_pem = key.to_pem()
    public_pem = key.verify_key().to_pem()

    if args.private_out:
        write_text(private_pem, args.private_out)
        os.chmod(args.private_out, 0o600)
        print(f"Private key saved to: {args.private_out}")
    else:
        print(private_pem)

    if args.public_out:
        write_text(public_pem, args.public_out)
        print(f"Public key saved to: {args.public_out}")
    else:
        print(public_pem)

    print(f"\nGenerated {key.alg} key: {key.kid}", file=sys.stderr)
    return 0


def cmd_sign(args):
    """Issue a signed token for a product payload."""
    from qrseal import load_signing_key, sign, verification_url, SigningError, KeyLoadError

    try:
        key = load_signing_key(read_text(args.key), kid=args.kid)
    except (OSError, KeyLoadError) as e:
        print(f"✗ Cannot load signing key: {e}", file=sys.stderr)
        return 2

    try:
        payload = json.loads(_inline_or_file(args.payload))
    except ValueError as e:
        print(f"✗ Payload is not valid JSON: {e}", file=sys.stderr)
        return 2

    try:
        token = sign(payload, key, expiry=args.expiry)
    except SigningError as e:
        print(f"✗ {e.code}: {e.message}", file=sys.stderr)
        return 1

    encoded = token.encode()
    output = {
        "signedToken": encoded,
        "productId": token.product_id,
        "kid": token.kid,
        "issuedAt": token.issued_at,
        "expiresAt": token.expires_at,
    }
    if args.base_url:
        output["verifyUrl"] = verification_url(encoded, args.base_url)
    print(json.dumps(output, indent=2, ensure_ascii=False))
    print(f"\n✓ Token issued for {token.product_id}", file=sys.stderr)
    return 0


def cmd_verify(args):
    """Verify a token offline against a public key."""
    from qrseal import load_verify_key, verify_token, VerificationError, KeyLoadError

    try:
        public_key = load_verify_key(read_text(args.public_key))
    except (OSError, KeyLoadError) as e:
        print(f"✗ Cannot load public key: {e}", file=sys.stderr)
        return 2

    try:
        token = verify_token(_inline_or_file(args.token), public_key, now=args.now)
    except VerificationError as e:
        print(f"✗ INVALID: {e.code}")
        if e.message and e.message != e.code:
            print(f"  {e.message}")
        return 1

    print(f"✓ VALID (kid={token.kid}, alg={token.alg})")
    print(json.dumps(token.payload.to_dict(), indent=2, ensure_ascii=False))
    if token.expires_at is not None:
        print(f"Expires at: {token.expires_at}")
    return 0


def cmd_encode(args):
    """Print the canonical form of a JSON document and its hash."""
    from qrseal import canonicalize_str, EncodingError
    from qrseal.util import sha256_hex

    try:
        document = load_json(args.file)
    except (OSError, ValueError) as e:
        print(f"✗ Cannot read JSON from {args.file}: {e}", file=sys.stderr)
        return 2

    try:
        text = canonicalize_str(document)
    except EncodingError as e:
        print(f"✗ {e.message}", file=sys.stderr)
        return 1

    print(text)
    print(f"sha256: {sha256_hex(text)}", file=sys.stderr)
    return 0


def build_parser() -> argparse.ArgumentParser:
    from qrseal.keys import ALG_ES256, SUPPORTED_ALGS

    parser = argparse.ArgumentParser(
        prog="qrseal",
        description="QRSeal signed product token CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  qrseal keygen --private-out private.pem --public-out public.pem
  qrseal sign -k private.pem -p '{"id": "SKU-42", "name": "Widget"}' -x 86400
  qrseal verify -K public.pem -t qs1.eJy...
  qrseal encode -f payload.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate signing key pair")
    keygen_parser.add_argument("-a", "--alg", choices=SUPPORTED_ALGS, default=ALG_ES256, help="Signing algorithm")
    keygen_parser.add_argument("-k", "--kid", help="Key identifier (default: public key fingerprint)")
    keygen_parser.add_argument("--private-out", help="Output file for private key PEM")
    keygen_parser.add_argument("--public-out", help="Output file for public key PEM")

    # sign
    sign_parser = subparsers.add_parser("sign", help="Issue a signed token")
    sign_parser.add_argument("-k", "--key", required=True, help="Private key file (PEM or base64 Ed25519 seed)")
    sign_parser.add_argument("-p", "--payload", required=True, help="Payload JSON, inline or as a file")
    sign_parser.add_argument("-x", "--expiry", type=int, help="Token lifetime in seconds")
    sign_parser.add_argument("--kid", help="Key identifier override")
    sign_parser.add_argument("-u", "--base-url", help="Verification base URL")

    # verify
    verify_parser = subparsers.add_parser("verify", help="Verify a signed token")
    verify_parser.add_argument("-K", "--public-key", required=True, help="Public key file")
    verify_parser.add_argument("-t", "--token", required=True, help="Token, inline or as a file")
    verify_parser.add_argument("--now", type=int, help="Verification time override (epoch seconds)")

    # encode
    encode_parser = subparsers.add_parser("encode", help="Print canonical JSON form")
    encode_parser.add_argument("-f", "--file", required=True, help="JSON file to encode")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "keygen":
        return cmd_keygen(args)
    elif args.command == "sign":
        return cmd_sign(args)
    elif args.command == "verify":
        return cmd_verify(args)
    elif args.command == "encode":
        return cmd_encode(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
