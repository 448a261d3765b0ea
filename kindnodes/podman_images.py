"""Making sure node images are present in the local podman image store."""

from __future__ import annotations

import logging
import time
from typing import Iterable

from kindnodes.base import RunError, run

_log = logging.getLogger(__name__)

_DIGEST_SEPARATOR = "@sha256:"
_DEFAULT_DOMAIN = "docker.io/"
_OFFICIAL_REPO_NAME = "library"


def sanitize_image(image: str) -> tuple[str, str]:
    """Return a human readable image name and the fully qualified pullable name.

    Podman does not assume a default registry, so short names are expanded
    to docker.io (and official images to docker.io/library). When a digest
    is present the tag is dropped from the pullable name.
    """
    if _DIGEST_SEPARATOR in image:
        splits = image.split(_DIGEST_SEPARATOR)
        friendly = splits[0]
        remainder = splits[0].split(":")[0] + _DIGEST_SEPARATOR + splits[1]
    else:
        friendly = image
        remainder = image

    if "/" not in remainder:
        remainder = f"{_OFFICIAL_REPO_NAME}/{remainder}"

    domain, separator, _ = friendly.partition("/")
    has_registry = bool(separator) and (
        any(ch in domain for ch in ".:") or domain == "localhost"
    )
    if not has_registry:
        return friendly, _DEFAULT_DOMAIN + remainder
    return friendly, remainder


def pull_if_not_present(image: str, retries: int = 4, logger: logging.Logger | None = None) -> bool:
    """Pull ``image`` unless present locally; return whether a pull was attempted."""
    logger = logger or _log
    try:
        run(["podman", "inspect", "--type=image", image])
    except (RunError, OSError):
        pull(image, retries, logger)
        return True
    logger.debug("Image: %s present locally", image)
    return False


def pull(image: str, retries: int = 4, logger: logging.Logger | None = None) -> None:
    """Pull ``image``, retrying up to ``retries`` times with a growing delay."""
    logger = logger or _log
    logger.debug("Pulling image: %s ...", image)
    try:
        run(["podman", "pull", image])
        return
    except (RunError, OSError) as exc:
        error: Exception = exc
    for attempt in range(retries):
        time.sleep(attempt + 1)
        logger.debug('Trying again to pull image: "%s" ... %s', image, error)
        try:
            run(["podman", "pull", image])
            return
        except (RunError, OSError) as exc:
            error = exc
    raise RuntimeError(f'failed to pull image "{image}"') from error


def ensure_node_images(images: Iterable[str], logger: logging.Logger | None = None) -> None:
    """Make sure every distinct image is present, in sorted order."""
    logger = logger or _log
    for required in sorted(set(images)):
        friendly, image = sanitize_image(required)
        logger.info("Ensuring node image (%s) 🖼", friendly)
        pull_if_not_present(image, 4, logger)