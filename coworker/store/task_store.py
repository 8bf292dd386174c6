"""Markdown-file task store shared by agents and the desktop UI."""

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

from coworker.app.models.task import (
    ACTIVE_LOCATIONS,
    ALL_LOCATIONS,
    MoveResult,
    Task,
    TaskCreate,
    TaskFilters,
    TaskLocation,
    TaskStatus,
    TaskSummary,
    TaskUpdate,
    normalize_none,
)
from coworker.locking import LocalLockManager, LockContext, LockManager
from coworker.store.durable_write import atomic_write_text
from coworker.store.markdown_format import (
    TaskFile,
    generate_task_id,
    parse_task_file,
    serialize_task_file,
    single_line,
)

logger = logging.getLogger(__name__)

JOURNAL_NAME = ".taskstore-journal.json"
MAX_ID_SUFFIX = 1000


class TaskStore:
    """
    CRUD over the five task list files under a PersonalAssistant root.

    Every mutation reads the affected files, edits the parsed documents and
    rewrites them whole. Writes that touch several files go through a commit
    journal so a crash can never leave a task in two lists or in none.
    """

    def __init__(
        self,
        root: Path,
        lock_manager: Optional[LockManager] = None,
        lock_timeout: int = 30,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize task store and replay any interrupted commit.

        Args:
            root: PersonalAssistant root directory
            lock_manager: Lock manager serializing writers (default: in-process locks)
            lock_timeout: Seconds to wait for the store lock
            clock: Returns the current time (default: UTC now)
        """
        self.root = Path(root)
        self.locks = lock_manager or LocalLockManager()
        self.lock_timeout = lock_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock_resource = f"taskstore:{self.root}"

        self.recover()

    # ------------------------------------------------------------------
    # Paths and persistence
    # ------------------------------------------------------------------

    def path_for(self, location: TaskLocation) -> Path:
        folder = "tasks" if location.is_active else "archive"
        return self.root / folder / f"{location.value}.md"

    def attachment_dir(self, task_id: str) -> Path:
        return self.root / "attachments" / task_id

    @property
    def journal_path(self) -> Path:
        return self.root / JOURNAL_NAME

    def load(self, location: TaskLocation) -> TaskFile:
        """Parse one list file. A missing file is an empty list."""
        try:
            content = self.path_for(location).read_text(encoding="utf-8")
        except FileNotFoundError:
            return TaskFile()
        return parse_task_file(content)

    def _commit(self, changes: dict[TaskLocation, TaskFile]) -> None:
        """
        Durably replace every changed list file as one logical write.

        The full new contents are journaled first; recover() finishes the
        write if the process dies part-way through.
        """
        rendered = {
            self.path_for(location).relative_to(self.root).as_posix(): serialize_task_file(doc)
            for location, doc in changes.items()
        }
        atomic_write_text(self.journal_path, json.dumps({"files": rendered}))
        self._apply(rendered)
        self.journal_path.unlink()

    def _apply(self, rendered: dict[str, str]) -> None:
        for relative_path, content in rendered.items():
            atomic_write_text(self.root / relative_path, content)

    def recover(self) -> bool:
        """
        Finish a commit interrupted by a crash.

        Returns:
            True if a journal was replayed
        """
        if not self.journal_path.exists():
            return False

        try:
            journal = json.loads(self.journal_path.read_text(encoding="utf-8"))
            files = journal["files"]
        except (OSError, json.JSONDecodeError, KeyError) as e:
            # The journal is written atomically, so an unreadable one was
            # never completed and no list file was touched.
            logger.error(f"Discarding unreadable task store journal: {e}")
            self.journal_path.unlink()
            return False

        self._apply(files)
        self.journal_path.unlink()
        logger.warning(f"Recovered interrupted task store commit ({', '.join(files)})")
        return True

    def _write_lock(self) -> LockContext:
        return LockContext(self.locks, self._lock_resource, timeout=self.lock_timeout)

    def _timestamp(self) -> str:
        return self._clock().strftime("%Y-%m-%d %H:%M:%S")

    def _locate(self, task_id: str) -> Optional[tuple[TaskLocation, TaskFile, Task]]:
        for location in ACTIVE_LOCATIONS:
            doc = self.load(location)
            task = doc.find(task_id)
            if task is not None:
                return location, doc, task
        return None

    def _require(self, task_id: str) -> tuple[TaskLocation, TaskFile, Task]:
        located = self._locate(task_id)
        if located is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return located

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def read_task(self, task_id: str) -> Optional[Task]:
        """
        Read a task from the active lists (today, due_soon, backlog).

        Args:
            task_id: Task ID

        Returns:
            Task if found, None otherwise
        """
        located = self._locate(task_id)
        return located[2] if located else None

    async def find_location(self, task_id: str) -> Optional[TaskLocation]:
        located = self._locate(task_id)
        return located[0] if located else None

    async def list_tasks(self, filters: Optional[TaskFilters] = None) -> list[TaskSummary]:
        """
        List active tasks in compact form.

        Args:
            filters: Optional location, priority, has_deadline and parent filters

        Returns:
            Matching task summaries (notes reduced to a count)

        Raises:
            TaskValidationError: If the location filter names an archive list
        """
        filters = filters or TaskFilters()
        if filters.location is not None and not filters.location.is_active:
            raise TaskValidationError(
                f"Invalid location: {filters.location.value}. Must be \"today\", \"backlog\", or \"due_soon\""
            )

        locations = (
            [filters.location] if filters.location
            else [TaskLocation.TODAY, TaskLocation.BACKLOG, TaskLocation.DUE_SOON]
        )

        summaries = []
        for location in locations:
            for task in self.load(location).tasks:
                if filters.priority and task.priority != filters.priority:
                    continue
                if filters.has_deadline and not task.has_deadline:
                    continue
                if filters.parent_id and task.parent_id != filters.parent_id:
                    continue
                summaries.append(task.to_summary(location))

        return summaries

    async def task_id_exists(self, task_id: str) -> bool:
        """Check all five lists, archives included."""
        return task_id in self._all_ids()

    def _all_ids(self) -> set[str]:
        return {task.id for location in ALL_LOCATIONS for task in self.load(location).tasks}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_task(self, data: TaskCreate, agent_id: Optional[str] = None) -> Task:
        """
        Create a task at the end of its list.

        Args:
            data: Task fields
            agent_id: Agent to attribute the creation to

        Returns:
            The created task

        Raises:
            TaskValidationError: If no date is set, the location is not active,
                the parent does not exist or no unique id is available
        """
        deadline = normalize_none(data.deadline)
        target_date = normalize_none(data.target_date)
        if deadline is None and target_date is None:
            raise TaskValidationError(
                'Task must have either a deadline or target_date (not both "none")'
            )
        if not data.location.is_active:
            raise TaskValidationError(
                f"Invalid location: {data.location.value}. Must be \"today\", \"backlog\", or \"due_soon\""
            )

        async with self._write_lock():
            task_id = self._unique_id(data.title)

            notes = []
            if agent_id:
                notes.append(f"[Created by Agent {agent_id} - {self._timestamp()}]")
            notes.extend(single_line(note) for note in data.notes)

            parent_id = normalize_none(data.parent_id)
            task = Task(
                title=data.title.strip(),
                id=task_id,
                parent_id=parent_id,
                priority=data.priority,
                deadline=deadline,
                target_date=target_date,
                days_in_today=1 if data.location == TaskLocation.TODAY else 0,
                notes=notes
            )

            doc = self.load(data.location)
            doc.tasks.append(task)
            changes = {data.location: doc}

            if parent_id:
                # Re-read through the pending change so a parent in the same list is updated in place
                parent_location, parent_doc = self._find_in(parent_id, changes)
                if parent_location is None:
                    raise TaskValidationError(f"Parent task {parent_id} not found")
                parent_doc.find(parent_id).subtasks.append(task_id)
                changes[parent_location] = parent_doc

            self._commit(changes)

        logger.info(f"[Agent {agent_id}] Created task: {task_id} in {data.location.value}")
        return task

    def _find_in(
        self,
        task_id: str,
        loaded: dict[TaskLocation, TaskFile]
    ) -> tuple[Optional[TaskLocation], Optional[TaskFile]]:
        for location in ACTIVE_LOCATIONS:
            doc = loaded[location] if location in loaded else self.load(location)
            if doc.find(task_id) is not None:
                return location, doc
        return None, None

    def _unique_id(self, title: str) -> str:
        base = generate_task_id(title)
        existing = self._all_ids()
        if base not in existing:
            return base
        for counter in range(1, MAX_ID_SUFFIX + 1):
            candidate = f"{base}-{counter}"
            if candidate not in existing:
                return candidate
        raise TaskValidationError(f"Could not generate a unique id for '{title}'")

    async def update_task(
        self,
        task_id: str,
        patch: TaskUpdate,
        agent_id: Optional[str] = None
    ) -> Task:
        """
        Update fields of a task in place. Notes are appended, never replaced.

        Args:
            task_id: Task ID
            patch: Fields to overwrite plus notes to append
            agent_id: Agent to attribute added notes to

        Returns:
            The updated task

        Raises:
            TaskNotFoundError: If the task is not in an active list
        """
        async with self._write_lock():
            location, doc, task = self._require(task_id)
            provided = patch.model_fields_set

            if patch.title:
                task.title = patch.title.strip()
            if patch.priority is not None:
                task.priority = patch.priority
            if "deadline" in provided:
                task.deadline = normalize_none(patch.deadline)
            if "target_date" in provided:
                task.target_date = normalize_none(patch.target_date)

            if patch.add_notes:
                timestamp = self._timestamp()
                prefix = (
                    f"[Added by Agent {agent_id} - {timestamp}] " if agent_id
                    else f"[Updated - {timestamp}] "
                )
                task.notes.extend(single_line(prefix + note) for note in patch.add_notes)

            self._commit({location: doc})

        logger.info(f"[Agent {agent_id}] Updated task: {task_id}")
        return task

    async def mark_task_done(
        self,
        task_id: str,
        completion_notes: Optional[str] = None,
        agent_id: Optional[str] = None
    ) -> Task:
        """
        Move a task to the done archive with status completed.

        Args:
            task_id: Task ID
            completion_notes: Optional note recorded with the completion
            agent_id: Agent to attribute the completion to

        Returns:
            The archived task

        Raises:
            TaskNotFoundError: If the task is not in an active list
        """
        async with self._write_lock():
            location, doc, task = self._require(task_id)
            doc.remove(task_id)

            task.status = TaskStatus.COMPLETED
            task.completed_date = self._clock().date().isoformat()
            if completion_notes:
                attribution = (
                    f"[Completed by Agent {agent_id} - {self._timestamp()}]" if agent_id
                    else f"[Completed - {self._timestamp()}]"
                )
                task.notes.append(single_line(f"{attribution} {completion_notes}"))

            done = self.load(TaskLocation.DONE)
            done.tasks.append(task)
            self._commit({location: doc, TaskLocation.DONE: done})

        logger.info(f"[Agent {agent_id}] Marked task as done: {task_id}")
        return task

    async def move_task(
        self,
        task_id: str,
        destination: Union[TaskLocation, str],
        agent_id: Optional[str] = None
    ) -> MoveResult:
        """
        Move a task between the active lists.

        Args:
            task_id: Task ID
            destination: today, due_soon or backlog
            agent_id: Agent performing the move (for logging)

        Returns:
            MoveResult; moved is False when the task was already there

        Raises:
            TaskValidationError: If destination is not an active list
            TaskNotFoundError: If the task is not in an active list
        """
        try:
            destination = TaskLocation(destination)
        except ValueError:
            destination = None
        if destination is None or not destination.is_active:
            raise TaskValidationError(
                'Invalid destination. Must be "today", "backlog", or "due_soon"'
            )

        async with self._write_lock():
            location, doc, task = self._require(task_id)
            if location == destination:
                return MoveResult(
                    task_id=task_id,
                    destination=destination,
                    moved=False,
                    message="Task is already in the destination location"
                )

            doc.remove(task_id)
            task.days_in_today = 1 if destination == TaskLocation.TODAY else 0

            target = self.load(destination)
            target.tasks.append(task)
            self._commit({location: doc, destination: target})

        logger.info(f"[Agent {agent_id}] Moved task {task_id} to {destination.value}")
        return MoveResult(task_id=task_id, destination=destination, moved=True)

    async def attach_file(
        self,
        task_id: str,
        source_path: Path,
        description: Optional[str] = None,
        agent_id: Optional[str] = None
    ) -> Task:
        """
        Copy a file into the task's attachment directory and record it.

        Args:
            task_id: Task ID
            source_path: File to attach (usually inside an agent workspace)
            description: Optional description for the attribution note
            agent_id: Agent attaching the file

        Returns:
            The updated task

        Raises:
            TaskValidationError: If the source file does not exist
            TaskNotFoundError: If the task is not in an active list
        """
        source_path = Path(source_path)
        if not source_path.is_file():
            raise TaskValidationError(f"File not found in workspace: {source_path.name}")

        async with self._write_lock():
            location, doc, task = self._require(task_id)

            attachment_dir = self.attachment_dir(task_id)
            attachment_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source_path, attachment_dir / source_path.name)

            if source_path.name not in task.attachments:
                task.attachments.append(source_path.name)

            note = f"[Attached by Agent {agent_id} - {self._timestamp()}] {source_path.name}"
            if description:
                note += f" - {description}"
            task.notes.append(single_line(note))

            self._commit({location: doc})

        logger.info(f"[Agent {agent_id}] Attached file {source_path.name} to task {task_id}")
        return task

    async def get_attachments(self, task_id: str, destination_dir: Path) -> list[str]:
        """
        Copy every attachment of a task into a directory.

        Args:
            task_id: Task ID
            destination_dir: Directory receiving the copies

        Returns:
            Filenames copied (empty if the task has no attachment directory)
        """
        attachment_dir = self.attachment_dir(task_id)
        if not attachment_dir.is_dir():
            return []

        copied = []
        for path in sorted(attachment_dir.iterdir()):
            if path.is_file():
                shutil.copy2(path, Path(destination_dir) / path.name)
                copied.append(path.name)

        logger.info(f"Copied {len(copied)} attachments of task {task_id} to {destination_dir}")
        return copied

    async def attach_artifact_note(
        self,
        task_id: str,
        artifact_path: Path,
        agent_id: Optional[str] = None
    ) -> Task:
        """
        Append an agent's deliverable to a task as a note.

        Args:
            task_id: Task ID
            artifact_path: File whose content becomes the note
            agent_id: Agent that produced the artifact

        Returns:
            The updated task

        Raises:
            TaskNotFoundError: If the task is not in an active list
        """
        content = Path(artifact_path).read_text(encoding="utf-8")

        async with self._write_lock():
            location, doc, task = self._require(task_id)
            task.notes.append(single_line(f"[Agent Output - {self._timestamp()}]\n{content}"))
            self._commit({location: doc})

        logger.info(f"[Agent {agent_id}] Attached artifact to task {task_id}")
        return task


class TaskStoreError(Exception):
    """Base class for task store errors."""
    pass


class TaskNotFoundError(TaskStoreError):
    """Raised when a task id is not present in the active lists."""
    pass


class TaskValidationError(TaskStoreError):
    """Raised when a request violates a task store invariant."""
    pass
