from __future__ import annotations

import os
import sys
import json
import time
import logging
import argparse
import base64
import tarfile

from pathlib import Path
from typing import List, Optional, Tuple

from capsule.archive import EncryptedTarWriter, open_backup_archive
from capsule.constants import DEFAULT_KEY_ENV, SECRET_DIR_ENV, SECRET_KEY_RETRIEVER_TYPE, VALID_KEY_SIZES
from capsule.encryptor import KeyLike
from capsule.errors import CapsuleError, MissingEncryptionKey
from capsule.keys import KeyRetriever, key_retriever_for, secret_key_config
from capsule.metadata import EncryptionMetadata
from capsule.secrets import DirectorySecretStore


METADATA_SUFFIX = ".meta.json"


def metadata_path(archive: str) -> str:
    return archive + METADATA_SUFFIX


def load_metadata(archive: str) -> Optional[EncryptionMetadata]:
    """Read the metadata sidecar written by ``seal``; None when absent."""
    path = metadata_path(archive)
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as fh:
        return EncryptionMetadata.from_dict(json.load(fh))


def save_metadata(archive: str, metadata: EncryptionMetadata) -> None:
    with open(metadata_path(archive), "w", encoding="utf-8") as fh:
        json.dump(metadata.to_dict(), fh, indent=2, sort_keys=True)
        fh.write("\n")


def cmd_keygen(*, size: int = 32) -> str:
    """Print a random key of ``size`` URL-safe base64 characters (``size`` key bytes)."""
    if size not in VALID_KEY_SIZES:
        raise ValueError(f"key size must be one of {', '.join(str(s) for s in VALID_KEY_SIZES)}")
    key = base64.urlsafe_b64encode(os.urandom(size)).decode("ascii")[:size]
    print(key)
    return key


def cmd_seal(
    output: str,
    inputs: List[str],
    *,
    key: Optional[KeyLike] = None,
    retriever: Optional[KeyRetriever] = None,
    quiet: bool = False,
) -> bool:
    """Pack filesystem paths into an encrypted tar.gz archive.

    Args:
        output: Path of the encrypted archive to write.
        inputs: Files or directories to store, each under its base name.
        key: Raw key material; mutually exclusive with ``retriever``.
        retriever: Key retriever to fetch the key from.
    """
    paths = [Path(p) for p in inputs]
    for p in paths:
        if not p.exists() and not p.is_symlink():
            raise FileNotFoundError(f"No such file or directory: {p}")

    t0 = time.time()
    try:
        with open(output, "wb") as fh:
            with EncryptedTarWriter(fh, key, retriever=retriever) as tw:
                for p in paths:
                    tw.add_file(p.name, str(p))
                    if not quiet:
                        print(f"    adding: {p.name}")
                if not quiet:
                    print(" Encrypting...", flush=True)
    except BaseException:
        # no partial archive is left behind without its metadata
        if os.path.exists(output):
            os.remove(output)
        raise

    if retriever is not None and retriever.retriever_type == SECRET_KEY_RETRIEVER_TYPE:
        metadata = EncryptionMetadata.for_retriever(retriever)
    else:
        metadata = EncryptionMetadata(is_encrypted=True)
    save_metadata(output, metadata)

    dt = max(0.000001, time.time() - t0)
    size = os.path.getsize(output)
    print(f"Done: {len(paths)} input(s); {size / (1024.0 * 1024.0):.2f} MiB encrypted in {dt:.1f}s")
    return True


def cmd_list(
    archive: str,
    *,
    key: Optional[KeyLike] = None,
    retriever: Optional[KeyRetriever] = None,
) -> List[str]:
    metadata = load_metadata(archive) or EncryptionMetadata(is_encrypted=True)
    with open(archive, "rb") as fh:
        with open_backup_archive(fh, metadata, key=key, retriever=retriever) as tar:
            names = []
            for member in tar.getmembers():
                kind = "d" if member.isdir() else ("l" if member.issym() else "f")
                print(f"{kind}\t{member.size}\t{member.name}")
                names.append(member.name)
    return names


def cmd_unseal(
    archive: str,
    *,
    outdir: str = ".",
    key: Optional[KeyLike] = None,
    retriever: Optional[KeyRetriever] = None,
    quiet: bool = False,
) -> bool:
    """Decrypt an archive and extract it into ``outdir``."""
    metadata = load_metadata(archive) or EncryptionMetadata(is_encrypted=True)
    os.makedirs(outdir, exist_ok=True)
    with open(archive, "rb") as fh:
        with open_backup_archive(fh, metadata, key=key, retriever=retriever) as tar:
            members = tar.getmembers()
            for member in members:
                if not quiet:
                    print(f" unsealing: {member.name}")
            tar.extractall(outdir, members=members, filter="data")
    print(f"Done: {len(members)} entr{'y' if len(members) == 1 else 'ies'} extracted to {outdir}")
    return True


def _resolve_key_source(
    args: argparse.Namespace,
    metadata: Optional[EncryptionMetadata] = None,
) -> Tuple[Optional[str], Optional[KeyRetriever]]:
    """Pick the key source from options, the metadata sidecar and the environment.

    Order: ``--key``, then a secret (``--secret`` or the secret named in the
    metadata, together with ``--namespace``), then the ``--key-env`` variable.
    """
    if args.key:
        return args.key, None

    secret_name = args.secret or (metadata.encryption_secret_name if metadata else "")
    if args.secret or (secret_name and args.namespace):
        if not args.secret_dir:
            raise ValueError("--secret-dir is required to read keys from secrets")
        retriever = key_retriever_for(
            SECRET_KEY_RETRIEVER_TYPE,
            secret_key_config(secret_name, args.namespace or ""),
            DirectorySecretStore(args.secret_dir),
        )
        return None, retriever

    key = os.environ.get(args.key_env)
    if not key:
        raise MissingEncryptionKey(f"no encryption key: pass --key, --secret or set {args.key_env}")
    return key, None


def _add_key_options(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--key", help="Encryption key (16, 24 or 32 characters)")
    ap.add_argument(
        "--key-env",
        default=DEFAULT_KEY_ENV,
        help=f"Environment variable holding the key (default {DEFAULT_KEY_ENV})",
    )
    ap.add_argument("--secret", help="Name of the secret holding the key in its 'encryptionKey' field")
    ap.add_argument("--namespace", help="Namespace of the secret")
    ap.add_argument(
        "--secret-dir",
        default=os.environ.get(SECRET_DIR_ENV),
        help=f"Directory of mounted secrets laid out as <namespace>/<name>/<field> (default ${SECRET_DIR_ENV})",
    )


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="capsule", description="Encrypted backup archive tool")
    ap.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_keygen = sub.add_parser("keygen", help="Print a new random encryption key")
    ap_keygen.add_argument("--size", type=int, choices=list(VALID_KEY_SIZES), default=32, help="Key size in bytes (default 32)")

    ap_seal = sub.add_parser("seal", help="Create an encrypted archive")
    ap_seal.add_argument("output", help="Output archive path")
    ap_seal.add_argument("inputs", nargs="+", help="Input files/directories")
    ap_seal.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")
    _add_key_options(ap_seal)

    ap_unseal = sub.add_parser("unseal", help="Decrypt and extract an archive")
    ap_unseal.add_argument("archive", help="Archive path")
    ap_unseal.add_argument("--outdir", default=".", help="Output directory")
    ap_unseal.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")
    _add_key_options(ap_unseal)

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Archive path")
    _add_key_options(ap_list)

    args = ap.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        if args.cmd == "keygen":
            cmd_keygen(size=args.size)
        elif args.cmd == "seal":
            key, retriever = _resolve_key_source(args)
            cmd_seal(args.output, args.inputs, key=key, retriever=retriever, quiet=args.quiet)
        elif args.cmd == "unseal":
            key, retriever = _resolve_key_source(args, load_metadata(args.archive))
            cmd_unseal(args.archive, outdir=args.outdir, key=key, retriever=retriever, quiet=args.quiet)
        elif args.cmd == "list":
            key, retriever = _resolve_key_source(args, load_metadata(args.archive))
            cmd_list(args.archive, key=key, retriever=retriever)
        else:
            raise RuntimeError("Unknown command")
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (CapsuleError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (tarfile.TarError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
