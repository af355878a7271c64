from __future__ import annotations

DEFAULT_TAG = "latest"


def split_image_reference(image: str) -> tuple[str, str | None]:
    """Split an image reference into ``(repository, tag)``.

    The tag separator is the last ``:`` after the last ``/``, so a registry
    port (``host:5000/repo``) is never mistaken for a tag.  Any digest suffix
    (``@sha256:...``) is ignored here.
    """
    name = image.partition("@")[0]
    last_slash = name.rfind("/")
    last_colon = name.rfind(":")
    if last_colon <= last_slash:
        return name, None
    return name[:last_colon], name[last_colon + 1 :]


def identity_key(image: str) -> str:
    """Return the dedup key for *image*: ``repository:tag`` or the bare reference.

    Digest-pinned references are their own identity and are returned as-is.
    """
    if "@" in image:
        return image
    repository, tag = split_image_reference(image)
    if tag is None:
        return repository
    return f"{repository}:{tag}"


def extract_tag(image: str) -> str:
    """Return the tag of *image*.

    Digest-pinned references without a tag yield the digest text after its
    last colon (``abc`` for ``web@sha256:abc``), otherwise ``latest``.
    """
    _, tag = split_image_reference(image)
    if tag:
        return tag
    _, _, digest = image.partition("@")
    return digest.rpartition(":")[2] or DEFAULT_TAG


def has_changed(new_image: str, old_image: str) -> bool:
    return identity_key(new_image) != identity_key(old_image)
