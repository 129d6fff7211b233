"""
Chunked file transfer over a message-oriented channel.

Outbound buffers are split into zero-indexed chunks, base64 encoded and
sent one by one with a short pause between sends. Inbound chunks are
collected into a sparse slot map per transfer and reassembled once the
terminal chunk has arrived and enough slots are filled.

Acceptance policy: the job is evaluated when the chunk marked last arrives
and again on every later chunk while it is still in progress. It completes
when present, non-empty slots / expected count >= acceptance_threshold.
Missing slots are skipped during reassembly, so completion below 100% is
lossy and not integrity-checked.
"""

import asyncio
import base64
import binascii
import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .config import TransferConfig
from .messages import (
    UPLOAD_ID,
    FileChunk,
    FileDownloadRequest,
    FileError,
    FileInfo,
    FileUploadComplete,
    FileUploadInit,
    Message,
    transfer_id_of,
)
from .transport import DuplexChannel
from .types import (
    PROGRESS_LOG_EVERY,
    ChannelError,
    ChunkDecodeError,
    InsufficientChunksError,
    RegistryError,
    TransferTimeoutError,
)

logger = logging.getLogger(__name__)


class TransferStatus(Enum):
    """Lifecycle of a transfer job."""
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


class TransferDirection(Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"


def split_into_chunks(data: bytes, chunk_size: int) -> List[bytes]:
    """
    Split a buffer into ordered slices of at most chunk_size bytes.

    An empty buffer yields a single empty chunk so the receiver still sees
    a terminal chunk.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not data:
        return [b""]
    return [data[i : i + chunk_size] for i in range(0, len(data), chunk_size)]


def build_chunks(
    transfer_id: str,
    data: bytes,
    chunk_size: int,
    id_field: str = UPLOAD_ID,
) -> List[FileChunk]:
    """Chunk frames for a buffer; only the final one is marked last."""
    pieces = split_into_chunks(data, chunk_size)
    last = len(pieces) - 1
    return [
        FileChunk(
            transfer_id=transfer_id,
            chunk_index=index,
            data=base64.b64encode(piece).decode("ascii"),
            is_last=index == last,
            encoding="base64",
            id_field=id_field,
        )
        for index, piece in enumerate(pieces)
    ]


def decode_chunk_data(chunk: FileChunk) -> bytes:
    """
    Decode a chunk's payload.

    Accepts base64 text (``encoding: "base64"``) and the legacy list-of-bytes
    form.

    Raises:
        ChunkDecodeError: If the payload cannot be decoded
    """
    data = chunk.data
    if chunk.encoding == "base64" and isinstance(data, str):
        try:
            return base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ChunkDecodeError(chunk.transfer_id, chunk.chunk_index, str(e)) from e

    if isinstance(data, list):
        try:
            return bytes(data)
        except (TypeError, ValueError) as e:
            raise ChunkDecodeError(chunk.transfer_id, chunk.chunk_index, str(e)) from e

    raise ChunkDecodeError(
        chunk.transfer_id, chunk.chunk_index, f"unsupported payload ({type(data).__name__})"
    )


@dataclass
class TransferJob:
    """State of one upload or download."""
    transfer_id: str
    direction: TransferDirection
    chunk_size: int
    total_size: Optional[int] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    status: TransferStatus = TransferStatus.IN_PROGRESS
    chunks: Dict[int, bytes] = field(default_factory=dict)
    expected_chunk_count: Optional[int] = None
    bytes_transferred: int = 0
    result: Optional[bytes] = None
    received_chunks: int = 0
    file_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_finished(self) -> bool:
        return self.status != TransferStatus.IN_PROGRESS

    @property
    def progress(self) -> float:
        """Fraction of the known total size moved so far (0 if unknown)."""
        if self.status == TransferStatus.COMPLETE:
            return 1.0
        if not self.total_size:
            return 0.0
        return min(1.0, self.bytes_transferred / self.total_size)

    def valid_count(self) -> int:
        """Present, non-empty slots within the expected range."""
        if self.expected_chunk_count is None:
            return 0
        return sum(
            1 for index in range(self.expected_chunk_count) if self.chunks.get(index)
        )

    def store_chunk(self, index: int, data: bytes, is_last: bool) -> None:
        """Place decoded bytes into their slot; the terminal chunk fixes the count."""
        if self.is_finished:
            return
        if index not in self.chunks:
            self.bytes_transferred += len(data)
        self.chunks[index] = data
        if is_last:
            self.expected_chunk_count = index + 1

    def assemble(self, threshold: float) -> bytes:
        """
        Concatenate present chunks in index order.

        Raises:
            InsufficientChunksError: If the terminal chunk has not arrived or
                too few slots are filled
        """
        expected = self.expected_chunk_count
        if expected is None:
            raise InsufficientChunksError(self.transfer_id, len(self.chunks), 0)

        if expected == 1 and self.chunks.get(0) == b"":
            return b""

        valid = self.valid_count()
        if valid / expected < threshold:
            raise InsufficientChunksError(self.transfer_id, valid, expected)

        return b"".join(self.chunks[i] for i in range(expected) if self.chunks.get(i))

    def mark_complete(self, data: bytes) -> None:
        if self.is_finished:
            return
        self.received_chunks = self.valid_count() if data else (self.expected_chunk_count or 0)
        self.result = data
        self.status = TransferStatus.COMPLETE
        self.chunks = {}

    def mark_failed(self, reason: str) -> None:
        if self.is_finished:
            return
        self.error = reason
        self.status = TransferStatus.FAILED
        self.release()

    def release(self) -> None:
        """Drop buffered chunks."""
        self.chunks = {}


@dataclass
class UploadResult:
    """Outcome of a finished upload."""
    upload_id: str
    file_id: str
    file_name: str
    size: int


@dataclass
class DownloadResult:
    """Outcome of a finished download."""
    file_id: str
    file_name: str
    mime_type: str
    data: bytes
    size: int
    received_chunks: int
    expected_chunks: int

    @property
    def lossless(self) -> bool:
        return self.received_chunks == self.expected_chunks


class ChunkedTransferManager:
    """
    Sends and receives chunked transfers over a DuplexChannel.

    Each active transfer owns one handler in the channel router's file
    registry, keyed by its transfer id. Unregistering that handler
    (cancel()) is the only way to stop a transfer and does not notify the
    remote side.

    Example usage:
        ```python
        manager = ChunkedTransferManager(channel)
        uploaded = await manager.upload(data, "photo.png", "image/png", "bob")
        downloaded = await manager.download(uploaded.file_id)
        ```
    """

    def __init__(
        self,
        channel: DuplexChannel,
        config: Optional[TransferConfig] = None,
    ) -> None:
        self.channel = channel
        self.config = config or TransferConfig()
        self.jobs: Dict[str, TransferJob] = {}
        self._waiters: Dict[str, asyncio.Future] = {}
        channel.on_close(self.fail_all)

    # MARK: - Send Path

    async def send_chunks(
        self,
        transfer_id: str,
        data: bytes,
        id_field: str = UPLOAD_ID,
        job: Optional[TransferJob] = None,
    ) -> int:
        """
        Stream a buffer as chunk frames.

        Args:
            transfer_id: Identifier stamped on every chunk.
            data: Buffer to send.
            id_field: ``uploadId`` or ``fileId``.
            job: Job whose progress is updated while sending.

        Returns:
            Number of chunks sent.
        """
        chunks = build_chunks(transfer_id, data, self.config.chunk_size, id_field)
        sent = 0

        for chunk in chunks:
            if job is not None and job.is_finished:
                logger.info("Transfer %s stopped after %d chunks", transfer_id, sent)
                break

            await self.channel.send(chunk)
            sent += 1

            if job is not None:
                job.bytes_transferred = min(len(data), sent * self.config.chunk_size)

            if sent % PROGRESS_LOG_EVERY == 0 or chunk.is_last:
                percent = 100 if not data else min(100, round(sent * self.config.chunk_size * 100 / len(data)))
                logger.debug("Transfer %s: %d%% sent", transfer_id, percent)

            if not chunk.is_last and self.config.send_delay:
                await asyncio.sleep(self.config.send_delay)

        return sent

    async def upload(
        self,
        data: bytes,
        file_name: str,
        mime_type: str,
        chat_username: str,
        upload_id: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload a buffer and wait for the server acknowledgement.

        Raises:
            ChannelError: If the server reports an upload error.
            TransferTimeoutError: If the configured timeout elapses.
        """
        upload_id = upload_id or generate_transfer_id()
        job = TransferJob(
            transfer_id=upload_id,
            direction=TransferDirection.UPLOAD,
            chunk_size=self.config.chunk_size,
            total_size=len(data),
            file_name=file_name,
            mime_type=mime_type,
        )
        waiter = self._start(job)

        try:
            await self.channel.send(FileUploadInit(
                upload_id=upload_id,
                file_name=file_name,
                mime_type=mime_type,
                total_size=len(data),
                chat_username=chat_username,
            ))
            await self.send_chunks(upload_id, data, UPLOAD_ID, job)
            logger.info("All chunks of %s sent, awaiting confirmation", upload_id)
            await self._wait(upload_id, waiter)
        finally:
            self._teardown(upload_id)

        return UploadResult(
            upload_id=upload_id,
            file_id=job.file_id or upload_id,
            file_name=job.file_name or file_name,
            size=len(data),
        )

    # MARK: - Receive Path

    def start_receive(self, transfer_id: str, direction: TransferDirection = TransferDirection.DOWNLOAD) -> TransferJob:
        """Register a job that collects inbound chunks for transfer_id."""
        job = TransferJob(transfer_id=transfer_id, direction=direction, chunk_size=self.config.chunk_size)
        self._start(job)
        return job

    async def wait(self, transfer_id: str) -> TransferJob:
        """
        Wait for a job started with start_receive() to finish, then tear it down.

        Raises:
            KeyError: If no such transfer is active.
            ChannelError: If the transfer fails.
            TransferTimeoutError: If the configured timeout elapses.
        """
        job = self.jobs[transfer_id]
        try:
            await self._wait(transfer_id, self._waiters[transfer_id])
        finally:
            self._teardown(transfer_id)
        return job

    async def download(self, file_id: str) -> DownloadResult:
        """
        Request a stored file and reassemble its chunks.

        Raises:
            ChannelError: If the server reports a download error.
            TransferTimeoutError: If the configured timeout elapses.
        """
        job = self.start_receive(file_id)
        waiter = self._waiters[file_id]

        try:
            await self.channel.send(FileDownloadRequest(file_id=file_id))
            await self._wait(file_id, waiter)
        finally:
            self._teardown(file_id)

        data = job.result or b""
        return DownloadResult(
            file_id=file_id,
            file_name=job.file_name or "file",
            mime_type=job.mime_type or "application/octet-stream",
            data=data,
            size=job.total_size if job.total_size is not None else len(data),
            received_chunks=job.received_chunks,
            expected_chunks=job.expected_chunk_count or 0,
        )

    def receive_chunk(self, job: TransferJob, chunk: FileChunk) -> TransferStatus:
        """
        Feed one inbound chunk into a job.

        A chunk that fails to decode leaves its slot empty and the transfer
        continues. Returns the job status after the chunk is applied.
        """
        if job.is_finished:
            logger.debug("Ignoring chunk %d for finished transfer %s", chunk.chunk_index, job.transfer_id)
            return job.status

        try:
            data = decode_chunk_data(chunk)
        except ChunkDecodeError as e:
            logger.warning("%s", e)
            data = None

        if data is not None:
            job.store_chunk(chunk.chunk_index, data, chunk.is_last)
        elif chunk.is_last:
            job.expected_chunk_count = chunk.chunk_index + 1

        if job.expected_chunk_count is None:
            return job.status

        try:
            assembled = job.assemble(self.config.acceptance_threshold)
        except InsufficientChunksError as e:
            logger.debug("%s; waiting for more", e)
            return job.status

        job.mark_complete(assembled)
        expected = job.expected_chunk_count
        if job.received_chunks < expected:
            logger.warning("Transfer %s completed with %d/%d chunks",
                           job.transfer_id, job.received_chunks, expected)
        else:
            logger.info("Transfer %s complete (%d bytes)", job.transfer_id, len(assembled))
        self._resolve(job)
        return job.status

    async def handle_message(self, message: Message) -> None:
        """Apply an inbound file frame to the matching job."""
        key = transfer_id_of(message)
        job = self.jobs.get(key) if key is not None else None
        if job is None and isinstance(message, FileError) and len(self.jobs) == 1:
            job = next(iter(self.jobs.values()))

        if job is None:
            logger.debug("No transfer for %s", type(message).__name__)
            return

        if isinstance(message, FileInfo):
            job.file_name = message.file_name
            job.mime_type = message.mime_type
            job.total_size = message.file_size
        elif isinstance(message, FileChunk):
            self.receive_chunk(job, message)
        elif isinstance(message, FileUploadComplete):
            job.file_id = message.file_id
            if message.file_name:
                job.file_name = message.file_name
            job.mark_complete(b"")
        elif isinstance(message, FileError):
            logger.error("Transfer %s failed: %s", job.transfer_id, message.error)
            job.mark_failed(message.error)

        if job.is_finished:
            self._resolve(job)

    def cancel(self, transfer_id: str) -> bool:
        """Stop handling a transfer and release its buffers."""
        job = self.jobs.get(transfer_id)
        if job is not None:
            job.mark_failed("cancelled")
            self._resolve(job)
        return self._teardown(transfer_id)

    def fail_all(self, reason: str) -> int:
        """
        Fail every active transfer and release it.

        Called by the channel when it closes or loses its connection.

        Returns:
            Number of transfers that were still in progress.
        """
        failed = 0
        for transfer_id, job in list(self.jobs.items()):
            if not job.is_finished:
                failed += 1
                job.mark_failed(reason)
            self._resolve(job)
            self._teardown(transfer_id)
        if failed:
            logger.warning("Failed %d active transfer(s): %s", failed, reason)
        return failed

    # MARK: - Private Helpers

    def _start(self, job: TransferJob) -> asyncio.Future:
        if job.transfer_id in self.jobs:
            raise RegistryError(f"Transfer {job.transfer_id} already active")
        if not self.channel.router.file_handlers.register(job.transfer_id, self.handle_message):
            raise RegistryError(f"Handler for {job.transfer_id} already registered")

        self.jobs[job.transfer_id] = job
        waiter = asyncio.get_running_loop().create_future()
        self._waiters[job.transfer_id] = waiter
        return waiter

    def _resolve(self, job: TransferJob) -> None:
        waiter = self._waiters.get(job.transfer_id)
        if waiter is None or waiter.done():
            return
        if job.status == TransferStatus.FAILED:
            waiter.set_exception(ChannelError(f"Transfer {job.transfer_id} failed: {job.error}"))
            # The job records the failure; a receive job may have no awaiter
            waiter.exception()
        else:
            waiter.set_result(job)

    async def _wait(self, transfer_id: str, waiter: asyncio.Future) -> None:
        timeout = self.config.timeout
        try:
            await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            job = self.jobs.get(transfer_id)
            if job is not None:
                job.mark_failed("timeout")
            raise TransferTimeoutError(transfer_id, timeout) from None

    def _teardown(self, transfer_id: str) -> bool:
        removed = self.channel.router.file_handlers.unregister(transfer_id)
        self.jobs.pop(transfer_id, None)
        self._waiters.pop(transfer_id, None)
        return removed


def generate_transfer_id() -> str:
    """Random URL-safe identifier for an upload."""
    return secrets.token_urlsafe(12)
