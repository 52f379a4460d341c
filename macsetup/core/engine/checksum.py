"""
Checksum verification — the gate in front of every network artifact.

An artifact with a declared digest is never installed, written to its
destination or executed before ``verify`` has passed. Digests may be
given bare (``abc123…``) or prefixed (``sha256:abc123…``).

md5 is accepted for legacy sources only; using it logs a warning and
the outcome is annotated ``legacy-digest:md5``.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path

from macsetup.core.errors import DigestMismatch, InvalidDeclaration
from macsetup.core.models.resource import DIGEST_ALGORITHMS

logger = logging.getLogger(__name__)

LEGACY_ALGORITHMS = frozenset({"md5"})
_CHUNK = 8192


@dataclass(frozen=True)
class Verification:
    """A successful verification."""

    path: str
    algorithm: str
    digest: str
    annotations: tuple[str, ...] = field(default_factory=tuple)

    @property
    def legacy(self) -> bool:
        return self.algorithm in LEGACY_ALGORITHMS


def parse_digest(expected: str, algorithm: str = "sha256") -> tuple[str, str]:
    """Split an ``algo:hex`` digest; the prefix wins over ``algorithm``.

    Raises:
        InvalidDeclaration: Unknown algorithm or empty digest.
    """
    expected = expected.strip()
    if ":" in expected:
        algorithm, expected = expected.split(":", 1)
    algorithm = algorithm.lower()
    if algorithm not in DIGEST_ALGORITHMS:
        raise InvalidDeclaration(
            f"Unknown checksum algorithm '{algorithm}'. Valid: {', '.join(DIGEST_ALGORITHMS)}"
        )
    if not expected:
        raise InvalidDeclaration("Empty digest")
    return algorithm, expected.lower()


def digest_bytes(data: bytes, algorithm: str = "sha256") -> str:
    return hashlib.new(algorithm, data).hexdigest()


def digest_file(path: Path, algorithm: str = "sha256") -> str:
    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


class ChecksumVerifier:
    """Verifies artifacts against declared digests."""

    def verify(self, artifact_path: Path | str, expected_digest: str, algorithm: str = "sha256") -> Verification:
        """Hash an artifact and compare it with the expected digest.

        Args:
            artifact_path: Downloaded file.
            expected_digest: Hex digest, optionally ``algo:``-prefixed.
            algorithm: Used when the digest carries no prefix.

        Returns:
            Verification (with ``legacy-digest:md5`` annotation for md5).

        Raises:
            DigestMismatch: Computed digest differs from the expected one.
            InvalidDeclaration: Unknown algorithm.
        """
        algorithm, expected = parse_digest(expected_digest, algorithm)
        path = Path(artifact_path)
        actual = digest_file(path, algorithm)

        if actual != expected:
            logger.error("%s mismatch for %s", algorithm, path)
            raise DigestMismatch(str(path), expected, actual, algorithm)

        annotations: tuple[str, ...] = ()
        if algorithm in LEGACY_ALGORITHMS:
            logger.warning("%s verified with legacy %s digest", path, algorithm)
            annotations = (f"legacy-digest:{algorithm}",)
        else:
            logger.debug("%s verified (%s)", path, algorithm)

        return Verification(path=str(path), algorithm=algorithm, digest=actual, annotations=annotations)
