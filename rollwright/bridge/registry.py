"""Container registry access: tag to digest resolution.

``HttpRegistryClient`` speaks the Docker Registry HTTP API v2 through
``requests``.  One call is one attempt; retrying is the resolver's job.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Protocol, runtime_checkable

import requests

from rollwright.core.errors import RegistryUnreachable, TagNotFound
from rollwright.models.artifacts import ArtifactReference

logger = logging.getLogger(__name__)

MANIFEST_MEDIA_TYPES = ", ".join([
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
])

# Docker Hub's API lives on a different host than its reference name.
_REGISTRY_API_HOSTS = {"docker.io": "registry-1.docker.io"}

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


@runtime_checkable
class RegistryClient(Protocol):
    """Protocol for registry digest lookups."""

    def resolve_digest(self, reference: ArtifactReference, *, timeout: float) -> str:
        """Return ``sha256:<hex>`` for the reference's tag.

        Raises ``TagNotFound`` if the registry does not know the tag and
        ``RegistryUnreachable`` for anything that may succeed on retry.
        """
        ...


class HttpRegistryClient:
    """Registry API v2 client with anonymous bearer-token support.

    Parameters
    ----------
    insecure:
        Use plain HTTP (local development registries).
    session:
        A ``requests.Session`` to reuse; one is created if omitted.
    """

    def __init__(
        self,
        *,
        insecure: bool = False,
        session: requests.Session | None = None,
    ) -> None:
        self._scheme = "http" if insecure else "https"
        self._session = session or requests.Session()
        self._tokens: dict[str, str] = {}

    def _manifest_url(self, reference: ArtifactReference) -> str:
        host = _REGISTRY_API_HOSTS.get(reference.registry, reference.registry)
        return f"{self._scheme}://{host}/v2/{reference.repository}/manifests/{reference.tag}"

    def resolve_digest(self, reference: ArtifactReference, *, timeout: float) -> str:
        url = self._manifest_url(reference)
        headers = {"Accept": MANIFEST_MEDIA_TYPES}
        token = self._tokens.get(reference.name)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = self._session.head(url, headers=headers, timeout=timeout)
            if response.status_code == 401:
                token = self._fetch_token(response, timeout)
                if token:
                    self._tokens[reference.name] = token
                    headers["Authorization"] = f"Bearer {token}"
                    response = self._session.head(url, headers=headers, timeout=timeout)

            self._raise_for_status(reference, response)

            digest = response.headers.get("Docker-Content-Digest", "")
            if not digest:
                # Some registries omit the header on HEAD; hash the manifest.
                response = self._session.get(url, headers=headers, timeout=timeout)
                self._raise_for_status(reference, response)
                digest = response.headers.get("Docker-Content-Digest") or (
                    "sha256:" + hashlib.sha256(response.content).hexdigest()
                )
        except requests.RequestException as exc:
            raise RegistryUnreachable(
                f"registry {reference.registry} unreachable: {exc}"
            ) from exc

        logger.debug("Resolved %s to %s", reference, digest)
        return digest

    @staticmethod
    def _raise_for_status(
        reference: ArtifactReference, response: requests.Response
    ) -> None:
        status = response.status_code
        if status == 404:
            raise TagNotFound(f"tag {reference.tag!r} not found in {reference.name}")
        if status >= 400:
            raise RegistryUnreachable(
                f"registry {reference.registry} answered HTTP {status} for {reference}"
            )

    def _fetch_token(self, challenge: requests.Response, timeout: float) -> str:
        """Answer a ``Bearer`` challenge with an anonymous token request."""
        header = challenge.headers.get("WWW-Authenticate", "")
        if not header.lower().startswith("bearer"):
            return ""
        params = dict(_CHALLENGE_PARAM.findall(header))
        realm = params.pop("realm", "")
        if not realm:
            return ""
        response = self._session.get(realm, params=params, timeout=timeout)
        if response.status_code != 200:
            return ""
        body = response.json()
        return body.get("token") or body.get("access_token") or ""
