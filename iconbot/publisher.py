from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .config import Settings
from .errors import MergeRequestError, PartialPublishError, PublishError
from .gitlab import GitLabClient
from .index import IndexEntry, insert_entry
from .utils import CmdResult, run_process


class PublishStep(str, Enum):
    RESOLVE = "resolve"
    CLONE = "clone"
    BRANCH = "branch"
    CHECKOUT = "checkout"
    WRITE_DRAWABLE = "write_drawable"
    UPDATE_INDEX = "update_index"
    COMMIT = "commit"
    PUSH = "push"
    CLEANUP = "cleanup"
    MERGE_REQUEST = "merge_request"


@dataclass(frozen=True)
class IconSubmission:
    app_identifier: str
    icon_name: str
    description: str
    vector: bytes

    @property
    def branch_name(self) -> str:
        return f"bot/icon_{self.icon_name}"

    @property
    def drawable_name(self) -> str:
        return f"themed_icon_{self.icon_name}"

    @property
    def drawable_file_name(self) -> str:
        return f"{self.drawable_name}.xml"

    @property
    def commit_message(self) -> str:
        return f"overlay: Add icon for {self.icon_name}"

    @property
    def index_entry(self) -> IndexEntry:
        return IndexEntry(drawable_name=self.drawable_name, package_name=self.app_identifier)


@dataclass
class PublishResult:
    branch: str
    commit: str
    merge_request_url: str | None = None


class RepositoryPublisher:
    """Commits a submission on its own branch and opens a merge request for it.

    Every attempt works in a private clone under a temporary directory, so
    concurrent publishes never share a working tree and the configured base
    tree is only read from.
    """

    def __init__(self, settings: Settings, gitlab: GitLabClient):
        self.settings = settings
        self.gitlab = gitlab

    async def publish(self, submission: IconSubmission) -> PublishResult:
        s = self.settings
        branch = submission.branch_name
        base, origin_url = await self._resolve()

        try:
            workdir = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="iconbot_"))
        except OSError as e:
            raise PublishError(PublishStep.CLONE.value, f"no scratch directory: {e}") from e
        repo = workdir / "repo"
        try:
            logging.info("Publishing %s from %s", branch, origin_url)
            await self._git(
                PublishStep.CLONE,
                "clone",
                "--quiet",
                "--origin",
                s.git_remote,
                "--reference-if-able",
                str(base),
                "--dissociate",
                "--branch",
                s.integration_branch,
                origin_url,
                str(repo),
                cwd=workdir,
            )
            await self._git(PublishStep.BRANCH, "branch", branch, s.integration_branch, cwd=repo)
            await self._git(PublishStep.CHECKOUT, "checkout", "--quiet", branch, cwd=repo)
            await self._in_thread(PublishStep.WRITE_DRAWABLE, self._write_drawable, repo, submission)
            await self._in_thread(PublishStep.UPDATE_INDEX, self._update_index, repo, submission)
            await self._git(PublishStep.COMMIT, "add", "--all", cwd=repo)
            await self._git(
                PublishStep.COMMIT,
                "-c",
                f"user.name={s.committer_name}",
                "-c",
                f"user.email={s.committer_email}",
                "commit",
                "--quiet",
                "-m",
                submission.commit_message,
                cwd=repo,
            )
            head = await self._git(PublishStep.COMMIT, "rev-parse", "HEAD", cwd=repo)
            commit = head.stdout.decode().strip()
            await self._git(
                PublishStep.PUSH,
                "push",
                "--quiet",
                s.git_remote,
                f"refs/heads/{branch}:refs/heads/{branch}",
                cwd=repo,
            )
            logging.info("Pushed %s (%s)", branch, commit)
        finally:
            await self._cleanup(workdir, repo)

        try:
            url = await self.gitlab.create_merge_request(
                project_id=s.gitlab_project_id,
                source_branch=branch,
                target_branch=s.integration_branch,
                title=submission.commit_message,
                description=submission.description,
                remove_source_branch=True,
            )
        except MergeRequestError as e:
            logging.error("Branch %s pushed but merge request failed: %s", branch, e)
            raise PartialPublishError(branch, str(e)) from e

        return PublishResult(branch=branch, commit=commit, merge_request_url=url)

    async def _resolve(self) -> tuple[Path, str]:
        s = self.settings
        base = s.overlay_repo_path
        if base is None:
            raise PublishError(PublishStep.RESOLVE.value, "PATH_TO_ICONS_OVERLAY is not set")
        if not base.is_dir():
            raise PublishError(PublishStep.RESOLVE.value, f"{base} is not a directory")
        if not self.gitlab.token:
            raise PublishError(PublishStep.RESOLVE.value, "GITLAB_TOKEN is not set")

        await self._git(PublishStep.RESOLVE, "rev-parse", "--is-inside-work-tree", cwd=base)
        res = await self._git(PublishStep.RESOLVE, "remote", "get-url", s.git_remote, cwd=base)
        return base, res.stdout.decode().strip()

    async def _git(self, step: PublishStep, *args: str, cwd: Path) -> CmdResult:
        res = await run_process(
            ("git", *args),
            cwd=cwd,
            timeout_sec=self.settings.git_timeout_sec,
            env={"GIT_TERMINAL_PROMPT": "0"},
        )
        if res.timed_out:
            raise PublishError(step.value, f"git {args[0]} timed out", timed_out=True)
        if not res.ok:
            raise PublishError(step.value, f"git {args[0]}: {res.error_text()}")
        return res

    async def _in_thread(self, step: PublishStep, func, *args) -> None:
        try:
            await asyncio.to_thread(func, *args)
        except (OSError, ValueError) as e:
            raise PublishError(step.value, str(e)) from e

    def _write_drawable(self, repo: Path, submission: IconSubmission) -> None:
        path = repo / self.settings.drawable_dir / submission.drawable_file_name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(submission.vector)

    def _update_index(self, repo: Path, submission: IconSubmission) -> None:
        path = repo / self.settings.index_file
        text = path.read_text(encoding="utf-8")
        path.write_text(
            insert_entry(text, submission.index_entry, self.settings.index_header_lines),
            encoding="utf-8",
        )

    async def _cleanup(self, workdir: Path, repo: Path) -> None:
        # Failures here are logged only; they must not hide the error that got us here
        if repo.is_dir():
            res = await run_process(
                ("git", "checkout", "--quiet", "--force", self.settings.integration_branch),
                cwd=repo,
                timeout_sec=self.settings.git_timeout_sec,
            )
            if not res.ok:
                logging.warning("%s: git checkout failed: %s", PublishStep.CLEANUP.value, res.error_text())
        try:
            await asyncio.to_thread(shutil.rmtree, workdir)
        except OSError:
            logging.exception("%s: could not remove %s", PublishStep.CLEANUP.value, workdir)
