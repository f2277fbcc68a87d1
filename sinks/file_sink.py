"""
File-drop sink: delivers a prompt as a Markdown file in the workspace.

Target:   {base}/{output_dir}/{filename_template}
  base              the item's origin_context when it is an existing
                    directory, else the configured workspace root
  output_dir        relative to base unless absolute (default .prompt-queue)
  filename_template {timestamp} and {id} tokens (default {timestamp}_{id}.md)

Existing files are never overwritten: name.md → name_2.md → name_3.md ...

File layout:
    ---
    id: 3f9a1c2e
    created: 2026-10-19 09:12
    not_before: 2026-10-19 14:17
    delivered: 2026-10-19 14:18
    ---

    <prompt text>
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime
from pathlib import Path
from typing import Optional

from models.schemas import CompletionPolicy, QueueItem
from sinks.base import DeliveryError, DeliverySink
from utils.timeutils import format_display_time, format_timestamp, utcnow

logger = structlog.get_logger()

DEFAULT_OUTPUT_DIR = ".prompt-queue"
DEFAULT_FILENAME_TEMPLATE = "{timestamp}_{id}.md"


def collision_candidate(path: Path, attempt: int) -> Path:
    """name.ext → name_{attempt}.ext; attempt 1 is the path itself."""
    if attempt <= 1:
        return path
    return path.with_name(f"{path.stem}_{attempt}{path.suffix}")


def resolve_collision(path: Path) -> Path:
    """First candidate name that does not exist yet."""
    attempt = 1
    candidate = path
    while candidate.exists():
        attempt += 1
        candidate = collision_candidate(path, attempt)
    return candidate


def render_prompt_file(item: QueueItem, delivered_at: datetime) -> str:
    header = "\n".join([
        "---",
        f"id: {item.id}",
        f"created: {format_display_time(item.created_at)}",
        f"not_before: {format_display_time(item.not_before)}",
        f"delivered: {format_display_time(delivered_at)}",
        "---",
    ])
    body = item.prompt_text.rstrip("\n")
    return f"{header}\n\n{body}\n"


class FileDropSink(DeliverySink):
    """Writes each due prompt to its own Markdown file."""

    name = "file"
    default_completion = CompletionPolicy.MARK_PROCESSED
    retry_on_tick = True
    # The write runs in a worker thread; a timeout cannot stop it
    bounded_by_timeout = False

    def __init__(
        self,
        output_dir: str = DEFAULT_OUTPUT_DIR,
        filename_template: str = DEFAULT_FILENAME_TEMPLATE,
        workspace_root: str = "",
        completion: Optional[CompletionPolicy] = None,
    ):
        super().__init__(completion)
        self.output_dir = output_dir or DEFAULT_OUTPUT_DIR
        self.filename_template = filename_template or DEFAULT_FILENAME_TEMPLATE
        self.workspace_root = workspace_root

    def resolve_directory(self, item: QueueItem) -> Path:
        out = Path(self.output_dir).expanduser()
        if out.is_absolute():
            return out
        if item.origin_context and Path(item.origin_context).is_dir():
            base = Path(item.origin_context)
        else:
            base = Path(self.workspace_root or ".")
        return base / out

    def filename_for(self, item: QueueItem, delivered_at: datetime) -> str:
        return (
            self.filename_template
            .replace("{timestamp}", format_timestamp(delivered_at))
            .replace("{id}", item.id)
        )

    async def _do_deliver(self, item: QueueItem) -> str:
        path = await asyncio.to_thread(self._write, item, utcnow())
        logger.info("prompt_file_written", item_id=item.id, path=str(path))
        return str(path)

    def _write(self, item: QueueItem, delivered_at: datetime) -> Path:
        directory = self.resolve_directory(item)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DeliveryError(f"cannot create {directory}: {e}", self.name, item.id) from e
        if not directory.is_dir():
            raise DeliveryError(f"not a directory: {directory}", self.name, item.id)

        target = directory / self.filename_for(item, delivered_at)
        content = render_prompt_file(item, delivered_at)

        candidate = resolve_collision(target)
        while True:
            try:
                # Exclusive create: a concurrent writer sends us to the next free name
                with open(candidate, "x", encoding="utf-8") as f:
                    f.write(content)
                return candidate
            except FileExistsError:
                candidate = resolve_collision(target)
            except OSError as e:
                raise DeliveryError(f"cannot write {candidate}: {e}", self.name, item.id) from e
