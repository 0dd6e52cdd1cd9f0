"""Command-line image editing over a running image chat server.

    python scripts/edit_image.py --image photo.jpg "add soft golden hour lighting"
    python scripts/edit_image.py --interactive --image photo.jpg

In interactive mode each line is sent as a follow-up edit; the transcript is
replayed as history so the model sees earlier results.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from image_chat.client import ImageChatClient  # noqa: E402
from image_chat.errors import ImageChatError  # noqa: E402

logger = logging.getLogger("image_chat.edit_image")

_EXT = {"image/jpeg": ".jpg", "image/webp": ".webp", "image/gif": ".gif"}


def _save(entry, out_dir: Path, index: int) -> Path:
    mime = (entry.image_url or "").split(";", 1)[0].replace("data:", "")
    path = out_dir / f"edit-{index:03d}{_EXT.get(mime, '.png')}"
    path.write_bytes(entry.image_bytes() or b"")
    return path


def main() -> int:
    parser = argparse.ArgumentParser(description="Edit or generate images through the image chat server.")
    parser.add_argument("prompt", nargs="?", default="", help="Edit instruction or generation prompt")
    parser.add_argument("--image", type=str, default=None, help="Image to upload with the first request")
    parser.add_argument("--server", type=str, default=os.environ.get("IMAGE_CHAT_URL", "http://127.0.0.1:3000"))
    parser.add_argument("--out", type=str, default="outputs", help="Directory for returned images")
    parser.add_argument("--interactive", action="store_true", help="Keep reading follow-up prompts from stdin")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    with ImageChatClient(args.server) as client:
        prompt, image, index = args.prompt, args.image, 1
        while True:
            if prompt or image:
                try:
                    entry = client.send(prompt, image)
                    logger.info("Saved %s", _save(entry, out_dir, index))
                    index += 1
                    image = None
                except ImageChatError as e:
                    logger.error("%s%s", e.message, f" ({e.detail})" if e.detail else "")
                    if not args.interactive:
                        return 1
            if not args.interactive:
                return 0
            try:
                prompt = input("edit> ").strip()
            except EOFError:
                return 0
            if prompt in {"exit", "quit"}:
                return 0


if __name__ == "__main__":
    sys.exit(main())
