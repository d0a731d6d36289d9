"""
Best effort detection of the running release: the git checkout the process runs from and the
deployment platform it runs on.  Lookups shell out to git, so results are cached for the life of
the process; call `clear_release_cache()` after a deploy swaps the working tree.
"""

import datetime
import functools
import logging
import os
import subprocess
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 2


def _git(*args: str, cwd: Optional[str] = None) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"git {' '.join(args)} failed: {e}")
        return None

    if result.returncode != 0:
        return None
    output = result.stdout.decode("utf-8", errors="replace").strip()
    return output or None


@functools.lru_cache(maxsize=4)
def detect_git_info(cwd: Optional[str] = None) -> Optional[dict[str, Any]]:
    root = cwd or os.getcwd()
    if not os.path.exists(os.path.join(root, ".git")):
        return None

    commit_sha = _git("rev-parse", "HEAD", cwd=root)
    if not commit_sha:
        return None

    branch = _git("rev-parse", "--abbrev-ref", "HEAD", cwd=root)
    if branch == "HEAD":
        branch = None

    commit_timestamp = None
    commit_time = _git("log", "-1", "--format=%ct", cwd=root)
    if commit_time and commit_time.isdigit():
        commit_timestamp = datetime.datetime.fromtimestamp(
            int(commit_time), tz=datetime.timezone.utc
        )

    info = {
        "commit_sha": commit_sha,
        "branch": branch,
        "tag": _git("describe", "--exact-match", "--tags", "HEAD", cwd=root),
        "commit_timestamp": commit_timestamp,
    }
    return {k: v for k, v in info.items() if v is not None}


def parse_deployment_time(value: str) -> Optional[datetime.datetime]:
    try:
        return datetime.datetime.fromisoformat(value)
    except ValueError:
        logger.debug(f"Ignoring unparseable DEPLOYMENT_TIME {value!r}")
        return None


def detect_deployment_info(environ: Optional[Mapping[str, str]] = None) -> Optional[dict[str, Any]]:
    env = os.environ if environ is None else environ
    info: dict[str, Any] = {}

    if env.get("DEPLOYMENT_ID"):
        info["deployment_id"] = env["DEPLOYMENT_ID"]
    if env.get("BUILD_NUMBER"):
        info["build_number"] = env["BUILD_NUMBER"]
    if env.get("DEPLOYMENT_TIME"):
        info["deployment_time"] = parse_deployment_time(env["DEPLOYMENT_TIME"])

    # Later platforms win: a kubernetes pod may also look like a docker container.
    if env.get("HEROKU_APP_NAME"):
        info["platform"] = "heroku"
        info["app_name"] = env["HEROKU_APP_NAME"]
        info["dyno"] = env.get("DYNO")
        info["slug_commit"] = env.get("HEROKU_SLUG_COMMIT")

    if env.get("AWS_EXECUTION_ENV"):
        info["platform"] = "aws"
        info["execution_env"] = env["AWS_EXECUTION_ENV"]
        info["region"] = env.get("AWS_REGION")

    if env.get("DOCKER_CONTAINER_ID") or (environ is None and os.path.exists("/.dockerenv")):
        info["platform"] = "docker"
        info["container_id"] = env.get("DOCKER_CONTAINER_ID")

    if env.get("KUBERNETES_SERVICE_HOST"):
        info["platform"] = "kubernetes"
        info["namespace"] = env.get("KUBERNETES_NAMESPACE")
        info["pod_name"] = env.get("HOSTNAME")

    info = {k: v for k, v in info.items() if v is not None}
    return info or None


def detect_release(
    cwd: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> Optional[dict[str, Any]]:
    release: dict[str, Any] = {}
    release.update(detect_git_info(cwd) or {})
    release.update(detect_deployment_info(environ) or {})
    return release or None


def clear_release_cache() -> None:
    detect_git_info.cache_clear()
