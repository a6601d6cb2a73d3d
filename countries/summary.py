"""
Render and publish the summary image served at ``/countries/image``.
"""
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, ImageDraw

from .exceptions import ArtifactPublishFailure

logger = logging.getLogger(__name__)

SUMMARY_KEY = 'summary'


@dataclass(frozen=True)
class SummaryData:
    total: int
    top: list
    timestamp: object


def render_summary_image(summary, out_path):
    img = Image.new("RGB", (600, 400), color=(255, 255, 255))
    draw = ImageDraw.Draw(img)

    draw.text((20, 20), f"Total Countries: {summary.total}", fill="black")
    draw.text((20, 60), f"Top {len(summary.top)} by Estimated GDP:", fill="black")

    y = 100
    for rank, country in enumerate(summary.top, start=1):
        draw.text((40, y), f"{rank}. {country.name}: {country.estimated_gdp:,.2f}", fill="black")
        y += 30

    draw.text((20, 360), f"Last Refresh: {summary.timestamp:%Y-%m-%d %H:%M:%S %Z}", fill="gray")

    img.save(out_path, format="PNG")


class SummaryPublisher:
    """Writes ``<cache_dir>/summary.png``, replacing any earlier one."""

    def __init__(self, cache_dir, renderer=render_summary_image, key=SUMMARY_KEY):
        self.cache_dir = Path(cache_dir)
        self.renderer = renderer
        self.key = key

    @property
    def artifact_path(self):
        return self.cache_dir / f"{self.key}.png"

    def publish(self, total, top, timestamp):
        if self.renderer is None:
            logger.warning("No summary renderer configured; skipping %s", self.artifact_path)
            return None

        summary = SummaryData(total=total, top=list(top), timestamp=timestamp)
        tmp_name = None
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.key}-", suffix=".png", dir=self.cache_dir)
            os.close(fd)
            self.renderer(summary, tmp_name)
            os.replace(tmp_name, self.artifact_path)
        except Exception as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise ArtifactPublishFailure(f"could not publish {self.artifact_path}: {exc}") from exc

        logger.info("Summary image written to %s", self.artifact_path)
        return self.artifact_path
