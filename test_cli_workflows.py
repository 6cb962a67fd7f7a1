from __future__ import annotations

import io
import os
import json
import subprocess
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from typing import Dict

from capsule.cli import cmd_keygen, cmd_list, cmd_seal, cmd_unseal, load_metadata
from capsule.errors import AuthenticationFailed, EncryptorConstructionFailed
from capsule.keys import SecretKeyRetriever
from capsule.secrets import DirectorySecretStore

from test_encryptor import KEY


def _random_bytes(size: int) -> bytes:
    return os.urandom(size)


def _build_fixture_tree(root: Path) -> Dict[str, bytes]:
    files = {
        "docs/readme.txt": b"hello world\n" * 50,
        "docs/nested/data.bin": _random_bytes(4096),
        "notes.md": b"# Title\nSome content\n",
    }
    for rel, data in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return files


def _compare_trees(src: Path, dst: Path, files: Dict[str, bytes]):
    for rel, data in files.items():
        target = dst / rel
        if not target.exists():
            raise AssertionError(f"missing {rel} in {dst}")
        if target.read_bytes() != data:
            raise AssertionError(f"content mismatch for {rel}")


def _write_secret(secret_root: Path, namespace: str, name: str, key: str) -> None:
    secret_dir = secret_root / namespace / name
    secret_dir.mkdir(parents=True)
    (secret_dir / "encryptionKey").write_text(key, encoding="utf-8")


class CLIFunctionTests(unittest.TestCase):
    def test_keygen_sizes(self):
        for size in (16, 24, 32):
            with self.subTest(size=size):
                with redirect_stdout(io.StringIO()) as buf:
                    key = cmd_keygen(size=size)
                self.assertEqual(size, len(key.encode("utf-8")))
                self.assertEqual(key, buf.getvalue().strip())

    def test_keygen_rejects_bad_size(self):
        with self.assertRaises(ValueError):
            cmd_keygen(size=20)

    def test_seal_list_unseal_with_key(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            files = _build_fixture_tree(src)
            archive = root / "backup.tar.gz.enc"

            with redirect_stdout(io.StringIO()):
                self.assertTrue(cmd_seal(str(archive), [str(src / "docs"), str(src / "notes.md")], key=KEY))
                names = cmd_list(str(archive), key=KEY)
            self.assertIn("docs/readme.txt", names)
            self.assertIn("notes.md", names)

            md = load_metadata(str(archive))
            self.assertTrue(md.is_encrypted)
            self.assertEqual("", md.encryption_secret_name)

            out = root / "out"
            with redirect_stdout(io.StringIO()):
                self.assertTrue(cmd_unseal(str(archive), outdir=str(out), key=KEY, quiet=True))
            _compare_trees(src, out, files)

    def test_unseal_wrong_key(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            _build_fixture_tree(src)
            archive = root / "backup.tar.gz.enc"
            with redirect_stdout(io.StringIO()):
                cmd_seal(str(archive), [str(src / "notes.md")], key=KEY)
            with self.assertRaises(AuthenticationFailed):
                cmd_unseal(str(archive), outdir=str(root / "out"), key="ABCDEFGHIJKLMNOPQRSTUVWX")

    def test_seal_records_secret_in_metadata(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            files = _build_fixture_tree(src)
            secrets_root = root / "secrets"
            _write_secret(secrets_root, "velero", "encryption-key", KEY)
            retriever = SecretKeyRetriever(DirectorySecretStore(str(secrets_root)), "encryption-key", "velero")
            archive = root / "backup.tar.gz.enc"

            with redirect_stdout(io.StringIO()):
                cmd_seal(str(archive), [str(src / "notes.md")], retriever=retriever)
            with open(str(archive) + ".meta.json", "r", encoding="utf-8") as fh:
                self.assertEqual({"encryptionSecretName": "encryption-key", "isEncrypted": True}, json.load(fh))

            out = root / "out"
            with redirect_stdout(io.StringIO()):
                cmd_unseal(str(archive), outdir=str(out), retriever=retriever)
            self.assertEqual(files["notes.md"], (out / "notes.md").read_bytes())

    def test_seal_failure_leaves_no_archive(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            _build_fixture_tree(src)
            archive = root / "backup.tar.gz.enc"
            with self.assertRaises(EncryptorConstructionFailed):
                cmd_seal(str(archive), [str(src / "notes.md")], key="short")
            self.assertFalse(archive.exists())
            self.assertIsNone(load_metadata(str(archive)))

    def test_seal_missing_input(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(FileNotFoundError):
                cmd_seal(str(Path(tmp) / "a.enc"), [str(Path(tmp) / "missing")], key=KEY)


class CLIIntegrationTests(unittest.TestCase):
    def run_cli(self, args, *, expect: int | None = 0, env_extra: Dict[str, str] | None = None):
        cmd = [sys.executable, "-m", "capsule.cli"] + list(args)
        env = os.environ.copy()
        env.pop("CAPSULE_ENCRYPTION_KEY", None)
        env.pop("CAPSULE_SECRET_DIR", None)
        env.update(env_extra or {})
        repo_root = Path(__file__).resolve().parent
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def test_roundtrip_with_env_key(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            files = _build_fixture_tree(src)
            archive = root / "backup.tar.gz.enc"
            env = {"CAPSULE_ENCRYPTION_KEY": KEY}

            seal_proc = self.run_cli(["seal", str(archive), str(src / "docs"), str(src / "notes.md")], env_extra=env)
            self.assertIn("Done:", seal_proc.stdout)

            list_proc = self.run_cli(["list", str(archive)], env_extra=env)
            self.assertIn("docs/nested/data.bin", list_proc.stdout)

            out = root / "out"
            self.run_cli(["unseal", str(archive), "--outdir", str(out)], env_extra=env)
            _compare_trees(src, out, files)

    def test_roundtrip_with_secret_from_metadata(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            files = _build_fixture_tree(src)
            secrets_root = root / "secrets"
            _write_secret(secrets_root, "velero", "encryption-key", KEY)
            archive = root / "backup.tar.gz.enc"

            self.run_cli([
                "seal", str(archive), str(src / "notes.md"),
                "--secret", "encryption-key", "--namespace", "velero", "--secret-dir", str(secrets_root),
            ])
            # the secret name comes from the metadata sidecar
            out = root / "out"
            self.run_cli([
                "unseal", str(archive), "--outdir", str(out),
                "--namespace", "velero", "--secret-dir", str(secrets_root),
            ])
            self.assertEqual(files["notes.md"], (out / "notes.md").read_bytes())

    def test_errors_exit_2(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            _build_fixture_tree(src)
            archive = root / "backup.tar.gz.enc"

            proc = self.run_cli(["seal", str(archive), str(src / "notes.md")], expect=2)
            self.assertIn("no encryption key", proc.stderr)

            proc = self.run_cli(["seal", str(archive), str(src / "notes.md"), "--key", "short"], expect=2)
            self.assertIn("failed to create AES encryptor", proc.stderr)

            self.run_cli(["seal", str(archive), str(src / "notes.md"), "--key", KEY])
            proc = self.run_cli(["unseal", str(archive), "--key", "ABCDEFGHIJKLMNOPQRSTUVWX", "--outdir", str(root / "x")], expect=2)
            self.assertIn("message authentication failed", proc.stderr)

            proc = self.run_cli([
                "unseal", str(archive), "--secret", "missing", "--namespace", "velero",
                "--secret-dir", str(root / "nosecrets"),
            ], expect=2)
            self.assertIn("failed to get encryption key", proc.stderr)

    def test_keygen(self):
        proc = self.run_cli(["keygen", "--size", "24"])
        self.assertEqual(24, len(proc.stdout.strip()))


if __name__ == "__main__":
    unittest.main()
