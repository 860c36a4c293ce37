"""Image references and their string forms."""

from dataclasses import dataclass, field, replace

from ..exceptions import ValidationError
from .auth import Credential

DEFAULT_REGISTRY = "registry-1.docker.io"
DEFAULT_TAG = "latest"


@dataclass(frozen=True)
class ImageReference:
    """Registry host, repository and tag-or-digest, plus the credential to use."""

    registry: str
    repository: str
    reference: str = DEFAULT_TAG
    credential: Credential | None = field(default=None, compare=False)
    scheme: str = "https"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.registry}"

    @property
    def is_digest(self) -> bool:
        return ":" in self.reference

    def with_reference(self, reference: str) -> "ImageReference":
        return replace(self, reference=reference)

    def __str__(self) -> str:
        separator = "@" if self.is_digest else ":"
        return f"{self.registry}/{self.repository}{separator}{self.reference}"


def parse_repository_tag(repo_tag: str) -> tuple[str, str]:
    """Parse "repository:tag" into its components.

    Args:
        repo_tag: Repository tag string
            - e.g. "nginx:alpine", "localhost:5000/myapp:latest"

    Returns:
        (repository, tag) tuple; tag defaults to "latest"

    Examples:
        parse_repository_tag("localhost:5000/myapp:latest")
        # ("localhost:5000/myapp", "latest")

        parse_repository_tag("localhost:5000/myapp")
        # ("localhost:5000/myapp", "latest")
    """
    last_slash = repo_tag.rfind("/")
    last_colon = repo_tag.rfind(":")
    # Only a colon after the final slash separates a tag; earlier ones are ports
    if last_colon > last_slash:
        repository, tag = repo_tag[:last_colon], repo_tag[last_colon + 1 :]
        return repository, tag or DEFAULT_TAG

    return repo_tag, DEFAULT_TAG


def _is_registry_host(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def parse_image_reference(
    image: str, credential: Credential | None = None
) -> ImageReference:
    """Parse "[scheme://][host[:port]/]repo[:tag|@digest]" into an ImageReference."""
    if not image:
        raise ValidationError("Empty image reference")

    scheme = "https"
    for prefix in ("http://", "https://"):
        if image.startswith(prefix):
            scheme = prefix[:-3]
            image = image[len(prefix) :]
            break

    if "@" in image:
        name, reference = image.split("@", 1)
        if ":" not in reference:
            raise ValidationError(f"Invalid digest in reference: {image}")
    else:
        name, reference = parse_repository_tag(image)

    first, _, rest = name.partition("/")
    if rest and _is_registry_host(first):
        registry, repository = first, rest
    else:
        registry, repository = DEFAULT_REGISTRY, name
        if "/" not in repository:
            repository = f"library/{repository}"

    if not repository or repository != repository.lower():
        raise ValidationError(f"Invalid repository name: {repository!r}")

    return ImageReference(
        registry=registry,
        repository=repository,
        reference=reference,
        credential=credential,
        scheme=scheme,
    )
