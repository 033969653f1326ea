"""Backup engine that mirrors Exercism solutions onto the local disk.

The ``BackupEngine`` ties together the API client, backup state, content
decisions, iteration planner and directory synchronizer.  A run:

1. Creates the output directory.
2. Pages through the solutions listing, strictly one page after another.
3. Creates the track directories of each page, then spawns one unit per
   solution in the outer ``TaskPool``.
4. Each solution unit loads its backup state, decides whether the content
   must be fetched again, downloads the files in an inner ``TaskPool``,
   synchronizes iterations if requested, then persists its new state.
5. Joins the outer pool, raising one ``MultiError`` listing every failure.

Every remote and filesystem call goes through the single
``ConcurrencyLimiter`` of the run, so nested fan-out never exceeds the
configured number of in-flight operations.

Error handling is per unit: one failing solution, file or iteration does
not stop its siblings.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ..core.async_utils import ConcurrencyLimiter
from ..core.task_pool import TaskPool
from ..errors import BackupError, ExercismApiError, MultiError, is_defect
from .decisions import ContentAction, decide_content_action
from .directory import DirectorySynchronizer, safe_join, write_chunks
from .iterations import (
    get_iterations_dir_name,
    list_local_iterations,
    plan_iteration_sync,
)
from .models import Iteration, ResponseMeta, Solution
from .options import BackupOptions
from .state import STATE_DIR_NAME, BackupState, BackupStateStore

if TYPE_CHECKING:
    from ..core.client import ExercismClient

logger = logging.getLogger(__name__)

SOLUTIONS_ERROR_CONTEXT = "errors detected while backing up solutions"


class BackupEngine:
    """Run a full backup of the solutions selected by *options*.

    Args:
        client: API client (blocking; calls are dispatched to threads).
        options: Run options, shared read-only by every unit.
        limiter: Limiter for remote and filesystem calls.  A new one sized
            by ``options.max_downloads`` is created when omitted.
    """

    def __init__(
        self,
        client: ExercismClient,
        options: BackupOptions,
        limiter: ConcurrencyLimiter | None = None,
    ) -> None:
        self.client = client
        self.options = options
        self.limiter = limiter or ConcurrencyLimiter(options.max_downloads)

        self.state_store = BackupStateStore()
        self.iterations_dir_name = get_iterations_dir_name()
        self.directories = DirectorySynchronizer(
            self.limiter, {self.iterations_dir_name, STATE_DIR_NAME}
        )

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Execute the backup.

        Raises:
            BackupError: If the output directory cannot be created.
            MultiError: If any solution failed to back up; the other
                solutions are still backed up.
        """
        logger.info(
            "Starting Exercism solutions backup to %s", self.options.path
        )
        if not self.options.dry_run:
            await self.directories.create_directory(self.options.path)

        output_path = self.options.path.resolve()
        logger.debug("Output path: %s", output_path)

        await self.backup_solutions(output_path)
        logger.info("Exercism solutions backup complete")

    async def backup_solutions(self, output_path: Path) -> None:
        """Spawn one unit per listed solution and wait for all of them.

        A failure while listing stops the listing, but solutions already
        spawned still run to completion and the listing failure is reported
        along with theirs.
        """
        pool = TaskPool()
        errors: list[BaseException] = []

        try:
            await self._spawn_solution_units(pool, output_path)
        except BaseException as exc:
            if is_defect(exc) or not isinstance(exc, Exception):
                await pool.abort()
                raise
            logger.error("Stopped listing solutions: %s", exc)
            errors.append(exc)

        logger.debug("Waiting for %d solution backups", len(pool))
        try:
            await pool.join(SOLUTIONS_ERROR_CONTEXT)
        except MultiError as exc:
            errors.extend(exc.errors)

        MultiError.check(errors, SOLUTIONS_ERROR_CONTEXT)

    async def _spawn_solution_units(
        self, pool: TaskPool, output_path: Path
    ) -> None:
        page = 1
        while True:
            solutions, meta = await self._get_solutions_for_page(page)

            if not solutions:
                logger.info("No solutions to backup in page %d", page)
            else:
                if self.options.dry_run:
                    logger.info(
                        "Solutions to backup in page %d: %s",
                        page,
                        ", ".join(solution.label for solution in solutions),
                    )
                else:
                    logger.info(
                        "Number of solutions to backup in page %d: %d",
                        page,
                        len(solutions),
                    )

                # Track directories are created up front so concurrent
                # units never race to create the same directory.
                await self._create_track_directories(output_path, solutions)

                for solution in solutions:
                    pool.spawn(self.backup_solution(output_path, solution))

            if meta.current_page >= meta.total_pages:
                break
            page += 1

    # ------------------------------------------------------------------
    # Per-solution unit
    # ------------------------------------------------------------------

    async def backup_solution(
        self, output_path: Path, solution: Solution
    ) -> None:
        """Back up one solution: content, iterations, then state."""
        label = solution.label
        solution_path = output_path / solution.track.name / solution.exercise.name
        logger.debug("Starting backup of %s into %s", label, solution_path)

        state = await self.limiter.run(
            self.state_store.load, solution, solution_path
        )
        stale = state.needs_update(solution)
        exists = await self.directories.exists(solution_path)
        action = decide_content_action(exists, stale, self.options.overwrite)
        logger.debug(
            "Solution %s: exists=%s stale=%s action=%s",
            label,
            exists,
            stale,
            action.value,
        )

        content_written = False
        if action is ContentAction.SKIP:
            logger.info("Solution to %s already exists; skipped.", label)
        else:
            await self._prepare_solution_directory(solution_path, action)
            await self._backup_files(solution, solution_path)
            content_written = not self.options.dry_run

        if self.options.iterations_sync_policy.sync():
            await self._sync_iterations(solution, solution_path)

        if content_written:
            try:
                await self.limiter.run(
                    self.state_store.save,
                    BackupState.for_solution(solution),
                    solution_path,
                )
            except OSError as exc:
                raise BackupError(
                    f"failed to save backup state for solution to {label}"
                ) from exc
            logger.info("Solution to %s downloaded", label)

    async def _prepare_solution_directory(
        self, solution_path: Path, action: ContentAction
    ) -> None:
        if self.options.dry_run:
            logger.info(
                "Would %s directory %s",
                "create" if action is ContentAction.CREATE_FRESH else "overwrite",
                solution_path,
            )
            return

        if action is ContentAction.PURGE_AND_RECREATE:
            await self.directories.purge_and_recreate(solution_path)
        else:
            await self.directories.create_directory(solution_path)

    async def _backup_files(
        self, solution: Solution, solution_path: Path
    ) -> None:
        try:
            files = await self.limiter.run(
                self.client.get_solution_files, solution.uuid
            )
        except ExercismApiError as exc:
            raise BackupError(
                f"failed to list files of solution to {solution.label}"
            ) from exc

        if self.options.dry_run:
            logger.info(
                "Files to backup for %s: %s", solution.label, ", ".join(files)
            )
            return

        pool = TaskPool()
        for file in files:
            pool.spawn(self._backup_one_file(solution, file, solution_path))
        await pool.join(
            f"errors detected while backing up solution for {solution.label}"
        )

    async def _backup_one_file(
        self, solution: Solution, file: str, solution_path: Path
    ) -> None:
        destination = safe_join(solution_path, file)
        await self.directories.ensure_parent(destination)

        try:
            written = await self.limiter.run(
                self._download_file, solution.uuid, file, destination
            )
        except ExercismApiError as exc:
            raise BackupError(
                f"failed to download file {file} in solution to exercise {solution.label}"
            ) from exc
        except OSError as exc:
            raise BackupError(
                f"failed to write data to file {destination}"
            ) from exc
        logger.debug("Wrote %d bytes to %s", written, destination)

    def _download_file(self, uuid: str, file: str, destination: Path) -> int:
        return write_chunks(destination, self.client.stream_file(uuid, file))

    # ------------------------------------------------------------------
    # Iterations
    # ------------------------------------------------------------------

    async def _sync_iterations(
        self, solution: Solution, solution_path: Path
    ) -> None:
        """Mirror the remote iterations of *solution* under its iterations directory."""
        policy = self.options.iterations_sync_policy
        iterations_path = solution_path / self.iterations_dir_name

        try:
            remote = await self.limiter.run(
                self.client.get_iterations, solution.uuid
            )
        except ExercismApiError as exc:
            raise BackupError(
                f"failed to fetch iterations of solution to {solution.label}"
            ) from exc

        remote = [it for it in remote if self.options.iteration_matches(it)]
        local = await self.limiter.run(list_local_iterations, iterations_path)
        ops = plan_iteration_sync(remote, local, policy)

        if self.options.dry_run:
            logger.info(
                "Iterations of %s: to backup %s, to clean up %s",
                solution.label,
                [it.index for it in ops.to_backup],
                ops.clean_up,
            )
            return

        if ops:
            pool = TaskPool()
            for index in ops.clean_up:
                pool.spawn(self._clean_up_iteration(iterations_path, index))
            for iteration in ops.to_backup:
                pool.spawn(
                    self._backup_iteration(solution, iterations_path, iteration)
                )
            await pool.join(
                f"errors detected while synchronizing iterations of solution for {solution.label}"
            )
            logger.info(
                "Iterations of %s synchronized: %d backed up, %d cleaned up",
                solution.label,
                len(ops.to_backup),
                len(ops.clean_up),
            )

        await self.directories.remove_if_empty(iterations_path)

    async def _clean_up_iteration(self, iterations_path: Path, index: int) -> None:
        logger.debug("Removing iteration %d from %s", index, iterations_path)
        await self.directories.remove_tree(iterations_path / str(index))

    async def _backup_iteration(
        self, solution: Solution, iterations_path: Path, iteration: Iteration
    ) -> None:
        """Download one iteration into a staging directory, then move it in place.

        Staging directories are not named by a plain integer, so a partially
        written iteration is never mistaken for a complete one.
        """
        if not iteration.submission_uuid:
            raise BackupError(
                f"iteration {iteration.index} of solution to {solution.label} has no submission"
            )

        try:
            files = await self.limiter.run(
                self.client.get_submission_files,
                solution.uuid,
                iteration.submission_uuid,
            )
        except ExercismApiError as exc:
            raise BackupError(
                f"failed to fetch files of iteration {iteration.index} "
                f"in solution to {solution.label}"
            ) from exc

        staging_path = iterations_path / f".{iteration.index}.partial"
        await self.directories.remove_tree(staging_path)
        for file in files:
            await self.directories.write_text(
                safe_join(staging_path, file.filename), file.content
            )
        await self.directories.create_directory(staging_path)
        await self.directories.rename(
            staging_path, iterations_path / str(iteration.index)
        )
        logger.debug(
            "Iteration %d of %s backed up (%d files)",
            iteration.index,
            solution.label,
            len(files),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_solutions_for_page(
        self, page: int
    ) -> tuple[list[Solution], ResponseMeta]:
        """Fetch one page and apply the client-side filters.

        Track and exercise filters are also sent to the server when exactly
        one value is given, to reduce the number of pages fetched.
        """
        tracks = self.options.tracks
        exercises = self.options.exercises
        try:
            solutions, meta = await self.limiter.run(
                self.client.get_solutions,
                page,
                track=tracks[0] if len(tracks) == 1 else None,
                criteria=exercises[0] if len(exercises) == 1 else None,
            )
        except ExercismApiError as exc:
            raise BackupError(
                f"failed to fetch solutions for page {page}"
            ) from exc

        selected = [s for s in solutions if self.options.solution_matches(s)]
        logger.debug(
            "Page %d/%d: %d solutions, %d selected",
            meta.current_page,
            meta.total_pages,
            len(solutions),
            len(selected),
        )
        return selected, meta

    async def _create_track_directories(
        self, output_path: Path, solutions: list[Solution]
    ) -> None:
        if self.options.dry_run:
            return
        for track_name in sorted({s.track.name for s in solutions}):
            await self.directories.create_directory(output_path / track_name)
