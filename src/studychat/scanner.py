"""Camera/gallery question scanning through a vision-capable completion model."""

from __future__ import annotations

import base64
import logging
import mimetypes
import shutil
import time
from pathlib import Path

from openai import AsyncOpenAI, OpenAIError

from .config import IMAGE_CACHE_DIR, NO_RESPONSE, OPENAI_API_KEY, SCAN_INSTRUCTION, VISION_MODEL
from .errors import CompletionError

logger = logging.getLogger(__name__)


def image_data_url(path: Path) -> str:
    mime = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{encoded}"


class ImageScanner:
    """Solves the question pictured in an image, step by step."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str = VISION_MODEL,
        cache_dir: Path = IMAGE_CACHE_DIR,
    ):
        self._client = client
        self.model = model
        self.cache_dir = cache_dir

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=OPENAI_API_KEY)
        return self._client

    async def scan(self, image_path: str | Path) -> str:
        path = Path(image_path)
        if not path.is_file():
            raise FileNotFoundError(f"Image not found: {path}")

        content = [
            {"type": "text", "text": SCAN_INSTRUCTION},
            {"type": "image_url", "image_url": {"url": image_data_url(path)}},
        ]
        logger.info("Scanning %s with %s", path.name, self.model)
        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": content}],
            )
        except OpenAIError as e:
            raise CompletionError(f"Image scan failed: {e}", cause=e) from e

        if not resp.choices:
            raise CompletionError("Image scan returned no choices")
        return resp.choices[0].message.content or NO_RESPONSE

    def cache_image(self, image_path: str | Path) -> Path:
        """Copy the scanned image into the local cache and return the cached path."""
        source = Path(image_path)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        target = self.cache_dir / f"{int(time.time() * 1000)}_{source.name}"
        shutil.copyfile(source, target)
        return target
