import io
import os
import zipfile

from pathlib import Path

from PIL import Image

import exception


def render_webp(archive_path: str | Path, frames: list[dict], output_path: str | Path) -> Path:
    """
    Merge the frames of a downloaded ugoira archive into one animated, lossless WebP.

    `frames` is the recorded frame list, each entry ``{"file": ..., "delay": ms}``;
    frames are emitted in that order.
    """
    output_path = Path(output_path)
    with zipfile.ZipFile(archive_path) as zf:
        names = set(zf.namelist())
        images = []
        durations = []
        for frame in frames:
            if frame["file"] not in names:
                raise exception.IntegrityError(f"{archive_path} has no frame {frame['file']}")
            im = Image.open(io.BytesIO(zf.read(frame["file"])))
            im.load()
            images.append(im)
            durations.append(int(frame["delay"]))

    if not images:
        raise exception.IntegrityError(f"{archive_path} has no frames to render")

    first_im = images.pop(0)
    tmp_path = output_path.with_name(f".{output_path.name}.part")
    first_im.save(
        tmp_path,
        format="webp",
        save_all=True,
        append_images=images,
        duration=durations,
        loop=0,
        lossless=True,
        quality=100,
    )
    os.replace(tmp_path, output_path)
    return output_path
