from __future__ import annotations

import base64
import binascii
import re
import typing as t

DEFAULT_IMAGE_MIME = "image/jpeg"
ALLOWED_IMAGE_MIMES = frozenset({"image/jpeg", "image/png", "image/webp", "image/gif", "image/heic"})

_DATA_URL_RE = re.compile(r"^data:(?P<mime>image/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


class FileUtils:
    """Photos of proofs and worked solutions travel as data URLs."""

    def to_data_url(self, data: bytes, mime_type: str | None = None) -> str:
        mime = self.normalize_mime(mime_type)
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"

    def normalize_mime(self, mime_type: str | None) -> str:
        mime = (mime_type or "").strip().lower()
        if mime == "image/jpg":
            mime = "image/jpeg"
        if mime not in ALLOWED_IMAGE_MIMES:
            return DEFAULT_IMAGE_MIME
        return mime

    def split_data_url(self, value: str) -> tuple[bytes, str]:
        """Return (bytes, mime) for a data URL or a bare base64 string."""
        s = value.strip()
        m = _DATA_URL_RE.match(s)
        if m:
            mime = self.normalize_mime(m.group("mime"))
            payload = m.group("data")
        else:
            mime = DEFAULT_IMAGE_MIME
            payload = s
        try:
            return base64.b64decode(payload, validate=True), mime
        except (binascii.Error, ValueError) as e:
            raise ValueError("Image is not valid base64 data") from e

    def read_upload(self, file_storage: t.Any) -> str | None:
        """Turn a werkzeug FileStorage into a data URL, or None if empty."""
        if not file_storage or not file_storage.filename:
            return None
        data = file_storage.read()
        if not data:
            return None
        return self.to_data_url(data, file_storage.mimetype)

    def read_uploads(self, files: t.Iterable[t.Any]) -> list[str]:
        out: list[str] = []
        for f in files:
            url = self.read_upload(f)
            if url:
                out.append(url)
        return out
