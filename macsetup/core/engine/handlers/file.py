"""
File handler — managed files with inline, downloaded or vault content.

Matching is by digest of the on-disk bytes:

    content      digest of the inline text
    secret       digest of the vault field (fetched once per run)
    lines        every line present (whitespace-normalised); missing
                 lines are appended as one block, other content kept
    source_url   the declared digest; without one only existence is
                 checked and outcomes are annotated ``unverified``

Secret values never appear in observed state, outcomes or logs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from macsetup.core.engine.checksum import digest_bytes, parse_digest
from macsetup.core.engine.handlers.base import (
    UNVERIFIED,
    ApplyResult,
    ResourceHandler,
    decode_bytes,
    encode_bytes,
)
from macsetup.core.engine.handlers.pam import has_line
from macsetup.core.errors import DigestMismatch
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.resource import FileSpec, ResourceDeclaration, ResourceKind

if TYPE_CHECKING:
    from macsetup.core.engine.privilege import PrivilegeSession

logger = logging.getLogger(__name__)


def missing_lines(text: str, lines: list[str]) -> list[str]:
    return [line for line in lines if line.strip() and not has_line(text, line)]


def with_lines(text: str | None, lines: list[str]) -> str:
    """Content with the block of ``lines`` appended."""
    block = "\n".join(lines) + "\n"
    if not text:
        return block
    if not text.endswith("\n"):
        text += "\n"
    return f"{text}\n{block}"


class FileHandler(ResourceHandler):
    kind = ResourceKind.FILE

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._secrets: dict[str, bytes] = {}

    def _secret_bytes(self, decl: ResourceDeclaration) -> bytes:
        if decl.id not in self._secrets:
            ref = decl.desired_value.secret  # type: ignore[union-attr]
            value = self.registry.vault.get(ref.item, ref.field, ref.vault)
            self._secrets[decl.id] = value.encode("utf-8")
        return self._secrets[decl.id]

    def _desired_digest(self, decl: ResourceDeclaration) -> tuple[str, str] | None:
        """``(algorithm, hex)`` the file must hash to, or None if unverifiable."""
        spec: FileSpec = decl.desired_value  # type: ignore[assignment]
        if spec.digest:
            return parse_digest(spec.digest, spec.algorithm)
        if spec.content is not None:
            return "sha256", digest_bytes(spec.content.encode("utf-8"))
        if spec.secret is not None:
            return "sha256", digest_bytes(self._secret_bytes(decl))
        return None

    def probe(self, decl: ResourceDeclaration) -> ObservedState:
        spec: FileSpec = decl.desired_value  # type: ignore[assignment]
        files = self.registry.files
        current = files.read_bytes(spec.path)
        if current is None:
            return ObservedState.absent(detail=f"{spec.path} does not exist")

        mode_ok = spec.mode is None or files.mode(spec.path) == spec.mode
        if spec.lines is not None:
            missing = missing_lines(current.decode("utf-8", errors="replace"), spec.lines)
            detail = f"{len(missing)} line(s) missing from {spec.path}" if missing else ""
            return ObservedState.present(None, not missing and mode_ok, detail=detail)

        desired = self._desired_digest(decl)
        if desired is None:
            return ObservedState.present(
                None, mode_ok, detail=f"{UNVERIFIED}: existence only",
            )

        algorithm, expected = desired
        actual = digest_bytes(current, algorithm)
        detail = "" if actual == expected else f"{algorithm} {actual[:12]}… != {expected[:12]}…"
        return ObservedState.present(f"{algorithm}:{actual}", actual == expected and mode_ok, detail=detail)

    def _desired_bytes(self, decl: ResourceDeclaration) -> tuple[bytes, list[str]]:
        spec: FileSpec = decl.desired_value  # type: ignore[assignment]
        if spec.lines is not None:
            current = self.registry.files.read_bytes(spec.path)
            text = current.decode("utf-8") if current is not None else None
            if text is not None and not missing_lines(text, spec.lines):
                return current, []
            return with_lines(text, spec.lines).encode("utf-8"), []
        if spec.content is not None:
            data = spec.content.encode("utf-8")
        elif spec.secret is not None:
            data = self._secret_bytes(decl)
        else:
            artifact, annotations = self._fetch_verified(spec.source_url, spec.digest, spec.algorithm)  # type: ignore[arg-type]
            return artifact.read_bytes(), annotations

        if spec.digest:
            algorithm, expected = parse_digest(spec.digest, spec.algorithm)
            actual = digest_bytes(data, algorithm)
            if actual != expected:
                raise DigestMismatch(spec.path, expected, actual, algorithm)
            if algorithm == "md5":
                logger.warning("%s verified with legacy md5 digest", spec.path)
                return data, ["legacy-digest:md5"]
        return data, []

    def apply(
        self,
        decl: ResourceDeclaration,
        observed: ObservedState,
        sudo: PrivilegeSession | None = None,
    ) -> ApplyResult:
        spec: FileSpec = decl.desired_value  # type: ignore[assignment]
        data, annotations = self._desired_bytes(decl)
        self.registry.files.write_bytes(spec.path, data, mode=spec.mode, sudo=self._sudo_for(decl, sudo))
        logger.info("Wrote %s (%d bytes)", spec.path, len(data))
        return ApplyResult(output=f"wrote {len(data)} bytes to {spec.path}", annotations=annotations)

    def describe(self, decl: ResourceDeclaration, observed: ObservedState) -> str:
        spec: FileSpec = decl.desired_value  # type: ignore[assignment]
        if spec.content is not None:
            source = "inline content"
        elif spec.secret is not None:
            source = f"secret {spec.secret.item}/{spec.secret.field}"
        elif spec.lines is not None:
            verb = "append to" if observed.exists else "create"
            return f"{verb} {spec.path}: {len(spec.lines)} line(s)"
        else:
            source = spec.source_url
        verb = "replace" if observed.exists else "create"
        return f"{verb} {spec.path} from {source}"

    def snapshot(self, decl: ResourceDeclaration, observed: ObservedState) -> dict[str, Any] | None:
        spec: FileSpec = decl.desired_value  # type: ignore[assignment]
        files = self.registry.files
        current = files.read_bytes(spec.path)
        if current is None:
            return None
        return {
            "path": spec.path,
            "content_b64": encode_bytes(current),
            "mode": files.mode(spec.path),
            "privileged": decl.requires_privilege,
        }

    def restore(self, payload: dict[str, Any], sudo: PrivilegeSession | None = None) -> ApplyResult:
        data = decode_bytes(payload["content_b64"])
        self.registry.files.write_bytes(
            payload["path"], data, mode=payload.get("mode"),
            sudo=sudo if payload.get("privileged") else None,
        )
        logger.info("Restored %s (%d bytes)", payload["path"], len(data))
        return ApplyResult(output=f"restored {len(data)} bytes to {payload['path']}")

    def annotations(self, decl: ResourceDeclaration) -> list[str]:
        spec: FileSpec = decl.desired_value  # type: ignore[assignment]
        if spec.source_url is not None and not spec.digest:
            return [UNVERIFIED]
        return []
