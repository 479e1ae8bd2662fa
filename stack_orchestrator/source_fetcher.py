"""
Layer source materialisation.

GitSourceFetcher makes a layer's source tree available locally:

    file:///path/to/repo  -> used in place (must exist)
    /path/to/repo         -> used in place (must exist)
    anything else         -> cloned into <workspace>/<repo-name>, or
                             fetched and hard-reset to origin/<branch>
                             when the clone already exists

Node.js projects get `npm install` on first checkout so that CDK apps
can be synthesised.
"""

from pathlib import Path
from urllib.parse import urlparse

from .core.exceptions import DeploymentError
from .core.protocols import ProcessExecutor
from .core.types import LayerSource
from .logger import logger, truncate_tail


def repo_name_from_url(repo_url: str) -> str:
    """
    Derive a directory name from a repository URL.

    Example:
        >>> repo_name_from_url("https://github.com/acme/network-stack.git")
        'network-stack'
    """
    path = urlparse(repo_url).path or repo_url
    name = path.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return name or "repo"


class GitSourceFetcher:
    """
    Clones or updates layer repositories inside the workspace.

    Args:
        workspace_root: Directory that receives clones
        executor: Used to run git and npm
    """

    def __init__(self, workspace_root: Path, executor: ProcessExecutor):
        self.workspace_root = Path(workspace_root)
        self.executor = executor

    def materialize(self, source: LayerSource) -> Path:
        """
        Make the source available locally.

        Returns:
            Path of the repository root.

        Raises:
            DeploymentError: If the path is missing or git fails
        """
        local = self._local_path(source.repo_url)
        if local is not None:
            if not local.exists():
                raise DeploymentError(f"Local repository not found: {local}")
            logger.info(f"Using local repository: {local}")
            return local

        target = self.workspace_root / repo_name_from_url(source.repo_url)
        if (target / ".git").exists():
            self._update(target, source.branch)
        else:
            self._clone(source.repo_url, target, source.branch)
            self._setup_node_project(target)

        logger.info(f"✓ Repository ready: {target.name}")
        return target

    @staticmethod
    def _local_path(repo_url: str):
        if repo_url.startswith("file://"):
            return Path(repo_url[len("file://"):])
        candidate = Path(repo_url).expanduser()
        if candidate.is_absolute() or repo_url.startswith("."):
            return candidate
        return None

    def _clone(self, repo_url: str, target: Path, branch: str) -> None:
        logger.info(f"Cloning repository: {repo_url} -> {target}")
        target.parent.mkdir(parents=True, exist_ok=True)
        result = self.executor.run(
            "git", ["clone", "--branch", branch, repo_url, str(target)]
        )
        if not result.success:
            raise DeploymentError(
                f"Failed to clone repository {repo_url}",
                diagnostic=truncate_tail(result.output),
            )

    def _update(self, target: Path, branch: str) -> None:
        logger.info(f"Updating repository at {target}")
        steps = (
            ["fetch", "origin"],
            ["checkout", branch],
            ["reset", "--hard", f"origin/{branch}"],
        )
        for args in steps:
            result = self.executor.run("git", args, cwd=target)
            if not result.success:
                raise DeploymentError(
                    f"git {args[0]} failed in {target}",
                    diagnostic=truncate_tail(result.output),
                )

    def _setup_node_project(self, target: Path) -> None:
        if not (target / "package.json").exists() or (target / "node_modules").exists():
            return
        logger.info("Installing npm dependencies...")
        result = self.executor.run("npm", ["install"], cwd=target, stream_output=True)
        if not result.success:
            logger.warning(f"⚠ npm install failed, continuing: {truncate_tail(result.output)}")
