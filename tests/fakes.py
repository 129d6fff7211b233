"""In-memory stand-ins for the remote key-exchange service and file server."""

import base64
from typing import Dict, Iterable, List, Optional, Tuple

from enveloup.handshake import HandshakeState, KeyExchangeService, KeyExchangeStatus
from enveloup.messages import (
    FILE_DOWNLOAD_ERROR,
    FILE_ID,
    FileError,
    FileInfo,
    FileUploadComplete,
)
from enveloup.storage import pair_key
from enveloup.transfer import build_chunks
from enveloup.transport import Frame, MemoryChannel


async def no_sleep(seconds: float) -> None:
    """Sleep replacement that returns immediately."""


class KeyExchangeRelay:
    """Server-side exchange records shared by every user's service stub."""

    def __init__(self) -> None:
        self.records: Dict[str, KeyExchangeStatus] = {}
        self.calls: List[Tuple[str, str, str]] = []

    def service(self, local_user: str) -> "RelayService":
        return RelayService(self, local_user)


class RelayService(KeyExchangeService):
    """KeyExchangeService bound to one local user."""

    def __init__(self, relay: KeyExchangeRelay, local_user: str) -> None:
        self.relay = relay
        self.local_user = local_user

    async def initiate(self, peer: str, generator: str, prime: str, public_value: str) -> bool:
        self.relay.calls.append(("initiate", self.local_user, peer))
        key = pair_key(self.local_user, peer)
        current = self.relay.records.get(key)
        if current is not None and current.state != HandshakeState.NOT_STARTED:
            return False
        self.relay.records[key] = KeyExchangeStatus(
            state=HandshakeState.INITIATED,
            prime=prime,
            generator=generator,
            initiator_public=public_value,
        )
        return True

    async def complete(self, peer: str, public_value: str) -> bool:
        self.relay.calls.append(("complete", self.local_user, peer))
        record = self.relay.records.get(pair_key(self.local_user, peer))
        if record is None or record.state != HandshakeState.INITIATED:
            return False
        record.responder_public = public_value
        record.state = HandshakeState.COMPLETED
        return True

    async def query_status(self, peer: str) -> KeyExchangeStatus:
        self.relay.calls.append(("query_status", self.local_user, peer))
        record = self.relay.records.get(pair_key(self.local_user, peer))
        if record is None:
            return KeyExchangeStatus(state=HandshakeState.NOT_STARTED)
        return KeyExchangeStatus(
            state=record.state,
            prime=record.prime,
            generator=record.generator,
            initiator_public=record.initiator_public,
            responder_public=record.responder_public,
        )


class UnreachableService(KeyExchangeService):
    """Service whose every call fails at the network level."""

    async def initiate(self, peer: str, generator: str, prime: str, public_value: str) -> bool:
        raise ConnectionError("service unreachable")

    async def complete(self, peer: str, public_value: str) -> bool:
        raise ConnectionError("service unreachable")

    async def query_status(self, peer: str) -> KeyExchangeStatus:
        raise ConnectionError("service unreachable")


class RpcFailure(Exception):
    """Error type of some third-party RPC client."""


class FailingRpcService(KeyExchangeService):
    """Service whose client library raises its own exception types."""

    def __init__(self, error: Exception) -> None:
        self.error = error

    async def initiate(self, peer: str, generator: str, prime: str, public_value: str) -> bool:
        raise self.error

    async def complete(self, peer: str, public_value: str) -> bool:
        raise self.error

    async def query_status(self, peer: str) -> KeyExchangeStatus:
        raise self.error


class FakeFileServer(MemoryChannel):
    """
    MemoryChannel that answers the file protocol like the chat server.

    Uploads are acknowledged with file_upload_complete once the last chunk
    arrives. Download requests are answered with file_info and the stored
    bytes in chunks; indices in ``drop`` are skipped and indices in
    ``corrupt`` carry undecodable data.
    """

    def __init__(
        self,
        chunk_size: int = 64,
        drop: Iterable[int] = (),
        corrupt: Iterable[int] = (),
        reorder: bool = False,
    ) -> None:
        super().__init__()
        self.chunk_size = chunk_size
        self.drop = set(drop)
        self.corrupt = set(corrupt)
        self.reorder = reorder
        self.files: Dict[str, Tuple[str, str, bytes]] = {}
        self._uploads: Dict[str, Tuple[str, str, List[bytes]]] = {}

    async def send(self, message: Frame) -> None:
        await super().send(message)
        frame = self.sent[-1]
        kind = frame.get("type")

        if kind == "file_upload_init":
            self._uploads[frame["uploadId"]] = (frame["fileName"], frame["mimeType"], [])
        elif kind == "file_chunk" and "uploadId" in frame:
            await self._store_chunk(frame)
        elif kind == "file_download_request":
            await self._stream(frame["fileId"])

    def store(self, data: bytes, file_name: str = "file.bin", mime_type: str = "application/octet-stream") -> str:
        """Place a file directly on the server and return its id."""
        file_id = f"file-{len(self.files) + 1}"
        self.files[file_id] = (file_name, mime_type, data)
        return file_id

    async def _store_chunk(self, frame: dict) -> None:
        upload_id = frame["uploadId"]
        file_name, mime_type, parts = self._uploads[upload_id]
        parts.append(base64.b64decode(frame["data"]))
        if frame["isLastChunk"]:
            file_id = self.store(b"".join(parts), file_name, mime_type)
            del self._uploads[upload_id]
            await self.receive(FileUploadComplete(upload_id, file_id, file_name).to_dict())

    async def _stream(self, file_id: str) -> None:
        stored: Optional[Tuple[str, str, bytes]] = self.files.get(file_id)
        if stored is None:
            await self.receive(FileError(FILE_DOWNLOAD_ERROR, "File not found", file_id).to_dict())
            return

        file_name, mime_type, data = stored
        await self.receive(FileInfo(file_id, file_name, mime_type, len(data)).to_dict())

        chunks = build_chunks(file_id, data, self.chunk_size, FILE_ID)
        if self.reorder:
            chunks = chunks[1:] + chunks[:1]
        for chunk in chunks:
            if chunk.chunk_index in self.drop:
                continue
            frame = chunk.to_dict()
            if chunk.chunk_index in self.corrupt:
                frame["data"] = "%%not base64%%"
            await self.receive(frame)
