"""
Wire schema for frames exchanged over the duplex channel.

Frames are JSON objects discriminated by their ``type`` field, except
encrypted frames which are recognised by ``encrypted: true``. Each variant
is decoded once at the transport boundary into one of the dataclasses below.
Field names use camelCase on the wire.
"""

import json
from dataclasses import dataclass, field
from typing import Optional, Union

from .envelope import EncryptedEnvelope, decode_envelope, encode_envelope, is_encrypted_message
from .types import MalformedEnvelopeError, MalformedMessageError, UnknownMessageTypeError

TEXT = "text"
FILE_UPLOAD_INIT = "file_upload_init"
FILE_UPLOAD_COMPLETE = "file_upload_complete"
FILE_UPLOAD_ERROR = "file_upload_error"
FILE_CHUNK = "file_chunk"
FILE_INFO = "file_info"
FILE_DOWNLOAD_REQUEST = "file_download_request"
FILE_DOWNLOAD_ERROR = "file_download_error"

UPLOAD_ID = "uploadId"
FILE_ID = "fileId"


def _require(data: dict, key: str, kind: type):
    value = data.get(key)
    if not isinstance(value, kind) or isinstance(value, bool) and kind is not bool:
        raise MalformedMessageError(f"Field {key!r} missing or not {kind.__name__}")
    return value


@dataclass
class TextMessage:
    """Plain chat text."""
    content: str
    sender: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"type": TEXT, "content": self.content}
        if self.sender is not None:
            data["senderUsername"] = self.sender
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TextMessage":
        return cls(content=_require(data, "content", str), sender=data.get("senderUsername"))


@dataclass
class EncryptedMessage:
    """A frame carrying an encrypted envelope."""
    envelope: EncryptedEnvelope
    kind: str = TEXT
    sender: Optional[str] = None
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update(encode_envelope(self.envelope))
        data["type"] = self.kind
        if self.sender is not None:
            data["senderUsername"] = self.sender
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EncryptedMessage":
        envelope = decode_envelope(data)
        known = {"type", "encrypted", "content", "iv", "encryptionParams", "senderUsername"}
        return cls(
            envelope=envelope,
            kind=str(data.get("type") or TEXT),
            sender=data.get("senderUsername"),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class FileUploadInit:
    """Announces an upload before its chunks."""
    upload_id: str
    file_name: str
    mime_type: str
    total_size: int
    chat_username: str

    def to_dict(self) -> dict:
        return {
            "type": FILE_UPLOAD_INIT,
            "uploadId": self.upload_id,
            "fileName": self.file_name,
            "mimeType": self.mime_type,
            "totalSize": self.total_size,
            "chatUsername": self.chat_username,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileUploadInit":
        return cls(
            upload_id=_require(data, "uploadId", str),
            file_name=_require(data, "fileName", str),
            mime_type=str(data.get("mimeType") or "application/octet-stream"),
            total_size=_require(data, "totalSize", int),
            chat_username=_require(data, "chatUsername", str),
        )


@dataclass
class FileChunk:
    """
    One slice of a transfer.

    Upload chunks are keyed by ``uploadId``, download chunks by ``fileId``;
    ``id_field`` records which one the frame used.
    """
    transfer_id: str
    chunk_index: int
    data: object
    is_last: bool = False
    encoding: str = "base64"
    id_field: str = UPLOAD_ID

    def to_dict(self) -> dict:
        return {
            "type": FILE_CHUNK,
            self.id_field: self.transfer_id,
            "chunkIndex": self.chunk_index,
            "data": self.data,
            "encoding": self.encoding,
            "isLastChunk": self.is_last,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileChunk":
        if isinstance(data.get(UPLOAD_ID), str):
            id_field = UPLOAD_ID
        elif isinstance(data.get(FILE_ID), str):
            id_field = FILE_ID
        else:
            raise MalformedMessageError("Chunk has neither uploadId nor fileId")

        chunk_index = _require(data, "chunkIndex", int)
        if chunk_index < 0:
            raise MalformedMessageError(f"Negative chunk index: {chunk_index}")

        is_last = data.get("isLastChunk", False)
        if not isinstance(is_last, bool):
            raise MalformedMessageError(f"Field 'isLastChunk' not bool: {is_last!r}")

        return cls(
            transfer_id=data[id_field],
            chunk_index=chunk_index,
            data=data.get("data"),
            is_last=is_last,
            encoding=str(data.get("encoding") or ""),
            id_field=id_field,
        )


@dataclass
class FileInfo:
    """Metadata sent before a download's chunks."""
    file_id: str
    file_name: str
    mime_type: str
    file_size: int

    def to_dict(self) -> dict:
        return {
            "type": FILE_INFO,
            "fileId": self.file_id,
            "fileName": self.file_name,
            "mimeType": self.mime_type,
            "fileSize": self.file_size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileInfo":
        return cls(
            file_id=_require(data, "fileId", str),
            file_name=str(data.get("fileName") or "file"),
            mime_type=str(data.get("mimeType") or "application/octet-stream"),
            file_size=int(data.get("fileSize") or 0),
        )


@dataclass
class FileUploadComplete:
    """Server acknowledgement that an upload was stored."""
    upload_id: str
    file_id: str
    file_name: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"type": FILE_UPLOAD_COMPLETE, "uploadId": self.upload_id, "fileId": self.file_id}
        if self.file_name is not None:
            data["fileName"] = self.file_name
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "FileUploadComplete":
        return cls(
            upload_id=_require(data, "uploadId", str),
            file_id=_require(data, "fileId", str),
            file_name=data.get("fileName"),
        )


@dataclass
class FileDownloadRequest:
    """Asks the server to stream a stored file."""
    file_id: str

    def to_dict(self) -> dict:
        return {"type": FILE_DOWNLOAD_REQUEST, "fileId": self.file_id}

    @classmethod
    def from_dict(cls, data: dict) -> "FileDownloadRequest":
        return cls(file_id=_require(data, "fileId", str))


@dataclass
class FileError:
    """Explicit failure of an upload or download."""
    kind: str
    error: str
    transfer_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"type": self.kind, "error": self.error}
        if self.transfer_id is not None:
            data[UPLOAD_ID if self.kind == FILE_UPLOAD_ERROR else FILE_ID] = self.transfer_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "FileError":
        kind = data["type"]
        transfer_id = data.get(UPLOAD_ID) if kind == FILE_UPLOAD_ERROR else data.get(FILE_ID)
        return cls(
            kind=kind,
            error=str(data.get("error") or "unknown error"),
            transfer_id=transfer_id if isinstance(transfer_id, str) else None,
        )


Message = Union[
    TextMessage,
    EncryptedMessage,
    FileUploadInit,
    FileChunk,
    FileInfo,
    FileUploadComplete,
    FileDownloadRequest,
    FileError,
]

_DECODERS = {
    TEXT: TextMessage.from_dict,
    FILE_UPLOAD_INIT: FileUploadInit.from_dict,
    FILE_CHUNK: FileChunk.from_dict,
    FILE_INFO: FileInfo.from_dict,
    FILE_UPLOAD_COMPLETE: FileUploadComplete.from_dict,
    FILE_DOWNLOAD_REQUEST: FileDownloadRequest.from_dict,
    FILE_UPLOAD_ERROR: FileError.from_dict,
    FILE_DOWNLOAD_ERROR: FileError.from_dict,
}


def parse_message(frame: Union[str, bytes, dict]) -> Message:
    """
    Decode a raw frame into a message variant.

    Args:
        frame: JSON text or an already-decoded object

    Returns:
        The matching message dataclass

    Raises:
        MalformedMessageError: If the frame is not a valid JSON object or lacks fields
        UnknownMessageTypeError: If the type tag is not recognised
    """
    if isinstance(frame, (str, bytes)):
        try:
            frame = json.loads(frame)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedMessageError(f"Invalid JSON: {e}") from e

    if not isinstance(frame, dict):
        raise MalformedMessageError("Frame must be a JSON object")

    if is_encrypted_message(frame):
        try:
            return EncryptedMessage.from_dict(frame)
        except MalformedEnvelopeError as e:
            raise MalformedMessageError(f"Invalid encrypted frame: {e}") from e

    kind = frame.get("type")
    decoder = _DECODERS.get(kind) if isinstance(kind, str) else None
    if decoder is None:
        raise UnknownMessageTypeError(kind)
    try:
        return decoder(frame)
    except (TypeError, ValueError) as e:
        raise MalformedMessageError(f"Invalid {kind} frame: {e}") from e


def transfer_id_of(message: Message) -> Optional[str]:
    """Transfer identifier a file-related message belongs to, if any."""
    if isinstance(message, FileChunk):
        return message.transfer_id
    if isinstance(message, (FileUploadInit, FileUploadComplete)):
        return message.upload_id
    if isinstance(message, (FileInfo, FileDownloadRequest)):
        return message.file_id
    if isinstance(message, FileError):
        return message.transfer_id
    return None
