"""
Configuration for the coverage badge service.
"""
import os

import yaml

# Docker image repository holding one tag per supported toolchain
COVER_IMAGE_REPO = os.environ.get("COVER_IMAGE_REPO", "avelino/cover.run")

# Supported toolchains and their runner images
SUPPORTED_TOOLCHAINS = {
    'golang-1.10': {
        'image': f'{COVER_IMAGE_REPO}:golang-1.10',
    },
    'golang-1.9': {
        'image': f'{COVER_IMAGE_REPO}:golang-1.9',
    },
    'golang-1.8': {
        'image': f'{COVER_IMAGE_REPO}:golang-1.8',
    },
}


def load_toolchains(path):
    """
    Load a toolchain table from a YAML file.

    The file maps a tag to its settings, e.g.::

        golang-1.11:
          image: avelino/cover.run:golang-1.11

    Args:
        path (str): Path to the YAML file

    Returns:
        dict: Toolchain table keyed by tag
    """
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Toolchain file {path} must contain a mapping")
    toolchains = {}
    for tag, settings in data.items():
        settings = dict(settings or {})
        settings.setdefault('image', f'{COVER_IMAGE_REPO}:{tag}')
        toolchains[str(tag)] = settings
    return toolchains


_toolchains_file = os.environ.get("COVER_TOOLCHAINS_FILE", "")
if _toolchains_file:
    SUPPORTED_TOOLCHAINS = load_toolchains(_toolchains_file)

# Toolchain used when a request does not name one
DEFAULT_TAG = os.environ.get("COVER_DEFAULT_TAG", "golang-1.10")

# Redis holds results, the in-progress registry and the overflow channel
REDIS_URL = os.environ.get("REDIS_URL", "redis://redis:6379/0")

RESULT_KEY_PREFIX = "cover:result:"
IN_PROGRESS_KEY = "cover:inprogress"
BADGE_KEY_PREFIX = "cover:badge:"
QUEUE_CHANNEL = "cover:queue"

# Cached results expire after an hour
RESULT_TTL_SECONDS = int(os.environ.get("RESULT_TTL_SECONDS", "3600"))

# Maximum simultaneous coverage runs per service instance
COVER_Q_MAX = int(os.environ.get("COVER_Q_MAX", "5"))

# Wall-clock limit for one coverage run (seconds)
RUN_TIMEOUT_SECONDS = int(os.environ.get("RUN_TIMEOUT_SECONDS", "300"))

# Repository existence probe and shields.io requests are slow
PROBE_TIMEOUT_SECONDS = float(os.environ.get("PROBE_TIMEOUT_SECONDS", "30"))

# Number of entries shown in the recent repositories view
RECENT_LIMIT = 5

# Kubernetes namespace for coverage jobs
DEFAULT_NAMESPACE = 'cover-run'

# Finished jobs are removed by the cluster after this many seconds
JOB_TTL_SECONDS = 300
