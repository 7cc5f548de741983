"""Artifact reference parsing and tag-to-digest resolution.

Grammar (the de-facto docker/distribution image reference)::

    reference  := name [ ":" tag ] [ "@" digest ]
    name       := [ domain "/" ] component ( "/" component )*
    domain     := host [ ":" port ]          (contains "." or ":" or is "localhost")
    component  := [a-z0-9]+ ( ( "." | "_" | "__" | "-"+ ) [a-z0-9]+ )*
    tag        := [\\w][\\w.-]{0,127}
    digest     := "sha256:" [a-f0-9]{64}

References without a domain belong to ``docker.io``; single-component
Docker Hub names live under ``library/``.  A reference with neither tag
nor digest means ``latest``.
"""

from __future__ import annotations

import logging
import re

from rollwright.bridge.registry import RegistryClient
from rollwright.core.cancellation import CancelToken
from rollwright.core.errors import InvalidReference, RegistryUnreachable
from rollwright.core.retry import retry_call
from rollwright.models.artifacts import ArtifactReference
from rollwright.models.config import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"

_COMPONENT = re.compile(r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*")
_DOMAIN = re.compile(
    r"(?:localhost|[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)*)(?::[0-9]+)?"
)
_TAG = re.compile(r"[\w][\w.-]{0,127}")
_DIGEST = re.compile(r"sha256:[a-f0-9]{64}")
_MAX_NAME_LENGTH = 255


def parse_reference(raw_ref: str) -> ArtifactReference:
    """Parse and normalize *raw_ref* without touching the network.

    Raises ``InvalidReference`` describing the first violation found.
    """
    text = (raw_ref or "").strip()
    if not text:
        raise InvalidReference("empty artifact reference")

    digest: str | None = None
    if "@" in text:
        text, digest = text.split("@", 1)
        if not _DIGEST.fullmatch(digest):
            raise InvalidReference(f"invalid digest {digest!r} in {raw_ref!r}")

    tag = ""
    colon = text.rfind(":")
    if colon > text.rfind("/"):
        text, tag = text[:colon], text[colon + 1:]
        if not _TAG.fullmatch(tag):
            raise InvalidReference(f"invalid tag {tag!r} in {raw_ref!r}")

    parts = text.split("/")
    first = parts[0]
    if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
        registry, path = first, parts[1:]
        if not _DOMAIN.fullmatch(registry):
            raise InvalidReference(f"invalid registry {registry!r} in {raw_ref!r}")
    else:
        registry, path = DEFAULT_REGISTRY, parts

    for component in path:
        if not _COMPONENT.fullmatch(component):
            raise InvalidReference(
                f"invalid repository component {component!r} in {raw_ref!r}"
            )
    if registry == DEFAULT_REGISTRY and len(path) == 1:
        path = ["library", *path]

    repository = "/".join(path)
    if len(f"{registry}/{repository}") > _MAX_NAME_LENGTH:
        raise InvalidReference(f"repository name too long in {raw_ref!r}")

    if not tag and digest is None:
        tag = DEFAULT_TAG
    return ArtifactReference(registry=registry, repository=repository, tag=tag, digest=digest)


class ArtifactResolver:
    """Turns raw references into digest-pinned ``ArtifactReference``s.

    Parameters
    ----------
    client:
        Registry backend used for tag lookups.
    timeout:
        Per-lookup bound in seconds.
    retry:
        Backoff for ``RegistryUnreachable``.  ``TagNotFound`` is final.
    """

    def __init__(
        self,
        client: RegistryClient,
        *,
        timeout: float = 10.0,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._retry = retry or RetryPolicy()

    def resolve(self, raw_ref: str, cancel: CancelToken | None = None) -> ArtifactReference:
        """Parse *raw_ref* and pin it to a digest.

        A reference that already names a digest is returned as parsed;
        the digest is authoritative and the registry is not consulted.
        """
        reference = parse_reference(raw_ref)
        if reference.is_resolved:
            return reference

        digest = retry_call(
            lambda: self._client.resolve_digest(reference, timeout=self._timeout),
            self._retry,
            retry_on=(RegistryUnreachable,),
            cancel=cancel,
            description=f"registry lookup of {reference}",
        )
        resolved = reference.model_copy(update={"digest": digest})
        logger.info("Resolved %s -> %s", raw_ref, resolved.pull_reference)
        return resolved
