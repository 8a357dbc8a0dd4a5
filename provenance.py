"""
Run provenance: who or what produced a snapshot, from which commit, with
which collector version.
"""

import logging
import os
from importlib.metadata import PackageNotFoundError, version
from typing import Mapping, Optional

from liveability_config import LiveabilityConfig
from schemas import Provenance

logger = logging.getLogger(__name__)

DISTRIBUTION_NAME = "london-liveability-collector"
LOCAL_VERSION = "0.0.0+local"


def resolve_collector_version() -> str:
    """Installed distribution version, or a local marker when running from a checkout"""
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        logger.debug(f"{DISTRIBUTION_NAME} is not installed; using {LOCAL_VERSION}")
        return LOCAL_VERSION


def _env(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(name)
    return value or None


def build_provenance(config: LiveabilityConfig, collector_version: str, environ: Optional[Mapping[str, str]] = None) -> Provenance:
    environ = os.environ if environ is None else environ
    in_actions = environ.get("GITHUB_ACTIONS", "").lower() == "true"

    server = _env(environ, "GITHUB_SERVER_URL") or "https://github.com"
    repository = _env(environ, "GITHUB_REPOSITORY")
    run_id = _env(environ, "GITHUB_RUN_ID")
    run_url = f"{server.rstrip('/')}/{repository}/actions/runs/{run_id}" if repository and run_id else None

    return Provenance(
        generated_by="github-actions" if in_actions else "local-cli",
        git_commit_sha=_env(environ, "GITHUB_SHA"),
        git_ref=_env(environ, "GITHUB_REF"),
        github_run_id=run_id,
        github_run_attempt=_env(environ, "GITHUB_RUN_ATTEMPT"),
        github_repository=repository,
        github_actor=_env(environ, "GITHUB_ACTOR"),
        workflow_name=_env(environ, "GITHUB_WORKFLOW"),
        run_url=run_url,
        collector_version=collector_version,
        sources_requested=config.sources.enabled_map(),
    )
