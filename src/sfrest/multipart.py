"""Request bodies for the binary (file) API.

Records with blob data (ContentVersion, Document, Attachment) are created by
POSTing a two-part ``multipart/form-data`` body: a JSON part named
``entity_content`` with the record fields, then the raw file content under
the blob field name (``VersionData``, ``Body``).
"""

from __future__ import annotations

import json
from typing import IO, Any, Callable, Iterator, Mapping, Optional, Tuple, Union

from urllib3.fields import RequestField
from urllib3.filepost import choose_boundary, encode_multipart_formdata

BinaryPayload = Union[bytes, bytearray, str, IO[bytes]]
ProgressObserver = Callable[[int, int], None]


def new_boundary() -> str:
    """Return a fresh, unguessable multipart boundary."""
    return "boundary_" + choose_boundary()


def _payload_bytes(payload: BinaryPayload) -> bytes:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    data = payload.read()
    if isinstance(data, str):
        return data.encode("utf-8")
    return data


def encode_multipart(
    fields: Mapping[str, Any],
    filename: str,
    payload_field: str,
    payload: BinaryPayload,
    boundary: Optional[str] = None,
) -> Tuple[bytes, str]:
    """Build the record-with-blob body.

    Returns ``(body, content_type)``. A new boundary is generated per call
    unless one is passed in.
    """
    metadata = RequestField("entity_content", json.dumps(dict(fields)))
    metadata.make_multipart(content_type="application/json")

    blob = RequestField(payload_field, _payload_bytes(payload), filename=filename)
    blob.make_multipart(content_type="application/octet-stream")

    return encode_multipart_formdata([metadata, blob], boundary=boundary or new_boundary())


class ProgressBody:
    """Sized, readable request body that reports upload progress.

    ``requests`` streams any iterable with a length, and the HTTP connection
    pulls it through :meth:`read`; every chunk handed out is reported to
    ``observer(bytes_sent, total_bytes)``.
    """

    def __init__(
        self,
        data: Union[bytes, str],
        observer: ProgressObserver,
        chunk_size: int = 64 * 1024,
    ) -> None:
        self._data = data.encode("utf-8") if isinstance(data, str) else data
        self._observer = observer
        self._chunk_size = chunk_size
        self._sent = 0

    def __len__(self) -> int:
        return len(self._data)

    @property
    def bytes_sent(self) -> int:
        return self._sent

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = len(self._data) - self._sent
        chunk = self._data[self._sent : self._sent + size]
        if chunk:
            self._sent += len(chunk)
            self._observer(self._sent, len(self._data))
        return chunk

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read(self._chunk_size)
            if not chunk:
                return
            yield chunk
