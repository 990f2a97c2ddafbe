import json

import pytest

from qrseal.cli import main


@pytest.fixture
def keypair(tmp_path, capsys):
    private, public = tmp_path / "private.pem", tmp_path / "public.pem"
    assert main(["keygen", "--private-out", str(private), "--public-out", str(public)]) == 0
    return private, public


def test_keygen_writes_pem_files(keypair, capsys):
    private, public = keypair
    assert "PRIVATE KEY" in private.read_text()
    assert "PUBLIC KEY" in public.read_text()
    assert oct(private.stat().st_mode & 0o777) == oct(0o600)
    assert "Generated ES256 key" in capsys.readouterr().err


def test_keygen_to_stdout(capsys):
    assert main(["keygen", "--alg", "EdDSA", "--kid", "demo"]) == 0
    captured = capsys.readouterr()
    assert "PRIVATE KEY" in captured.out
    assert "Generated EdDSA key: demo" in captured.err


def test_sign_then_verify(keypair, tmp_path, capsys):
    private, public = keypair
    capsys.readouterr()
    payload = tmp_path / "payload.json"
    payload.write_text(json.dumps({"id": "SKU-42", "name": "Widget"}))

    assert main(["sign", "-k", str(private), "-p", str(payload), "-x", "60", "-u", "https://v.example/v"]) == 0
    issued = json.loads(capsys.readouterr().out)
    assert issued["productId"] == "SKU-42"
    assert issued["expiresAt"] == issued["issuedAt"] + 60
    assert issued["verifyUrl"] == "https://v.example/v?p=" + issued["signedToken"]

    assert main(["verify", "-K", str(public), "-t", issued["signedToken"]]) == 0
    out = capsys.readouterr().out
    assert out.startswith("✓ VALID")
    assert '"id": "SKU-42"' in out

    token_file = tmp_path / "token.txt"
    token_file.write_text(issued["signedToken"] + "\n")
    assert main(["verify", "-K", str(public), "-t", str(token_file)]) == 0


def test_verify_rejects_expired_and_forged(keypair, tmp_path, capsys):
    private, public = keypair
    capsys.readouterr()
    assert main(["sign", "-k", str(private), "-p", '{"id": "SKU-42", "name": "Widget"}', "-x", "60"]) == 0
    token = json.loads(capsys.readouterr().out)
    late = str(token["expiresAt"] + 1)
    assert main(["verify", "-K", str(public), "-t", token["signedToken"], "--now", late]) == 1
    assert "✗ INVALID: expired" in capsys.readouterr().out

    other = tmp_path / "other.pem"
    main(["keygen", "--public-out", str(other)])
    capsys.readouterr()
    assert main(["verify", "-K", str(other), "-t", token["signedToken"]]) == 1
    assert "✗ INVALID: invalid_signature" in capsys.readouterr().out


def test_sign_errors(keypair, tmp_path, capsys):
    private, _ = keypair
    assert main(["sign", "-k", str(private), "-p", '{"id": "SKU-42"}']) == 1
    assert "invalid_payload" in capsys.readouterr().err
    assert main(["sign", "-k", str(private), "-p", "{not json"]) == 2
    assert main(["sign", "-k", str(tmp_path / "missing.pem"), "-p", "{}"]) == 2


def test_encode(tmp_path, capsys):
    doc = tmp_path / "doc.json"
    doc.write_text('{"b": 1, "a": {"y": [1, 2], "x": "é"}}', encoding="utf-8")
    assert main(["encode", "-f", str(doc)]) == 0
    captured = capsys.readouterr()
    assert captured.out.strip() == '{"a":{"x":"é","y":[1,2]},"b":1}'
    assert captured.err.startswith("sha256: ")


def test_encode_unreadable_input(tmp_path, capsys):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    assert main(["encode", "-f", str(broken)]) == 2
    assert main(["encode", "-f", str(tmp_path / "missing.json")]) == 2
    assert capsys.readouterr().err.count("Cannot read JSON") == 2
