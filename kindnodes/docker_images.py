"""Making sure node images are present in the local docker image store."""

from __future__ import annotations

import logging
import time
from typing import Iterable

from kindnodes.base import RunError, run

_log = logging.getLogger(__name__)

_DIGEST_SEPARATOR = "@sha256:"


def sanitize_image(image: str) -> tuple[str, str]:
    """Return a human readable image name and the pullable image name."""
    if _DIGEST_SEPARATOR in image:
        return image.split(_DIGEST_SEPARATOR)[0], image
    return image, image


def pull_if_not_present(image: str, retries: int = 4, logger: logging.Logger | None = None) -> bool:
    """Pull ``image`` unless present locally; return whether a pull was attempted."""
    logger = logger or _log
    try:
        run(["docker", "inspect", "--type=image", image])
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
        run(["docker", "pull", image])
        return
    except (RunError, OSError) as exc:
        error: Exception = exc
    for attempt in range(retries):
        time.sleep(attempt + 1)
        logger.debug('Trying again to pull image: "%s" ... %s', image, error)
        try:
            run(["docker", "pull", image])
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