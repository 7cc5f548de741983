"""Container artifact reference model.

A tag is mutable; a digest identifies content.  Rollouts only ever pull
by digest, so a reference must be resolved before it reaches a target.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ArtifactReference(BaseModel):
    """A normalized container image reference.

    ``digest`` is ``None`` until the resolver has looked the tag up in the
    registry.  Once set it is never changed (the model is frozen).
    """

    model_config = ConfigDict(frozen=True)

    registry: str
    repository: str
    tag: str = "latest"
    digest: str | None = None  # "sha256:<hex>"

    @property
    def is_resolved(self) -> bool:
        return self.digest is not None

    @property
    def name(self) -> str:
        """``registry/repository`` without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def pull_reference(self) -> str:
        """The reference a target pulls: by digest when resolved."""
        if self.digest:
            return f"{self.name}@{self.digest}"
        return f"{self.name}:{self.tag}"

    def __str__(self) -> str:
        text = self.name
        if self.tag:
            text += f":{self.tag}"
        if self.digest:
            text += f"@{self.digest}"
        return text
