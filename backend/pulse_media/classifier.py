from __future__ import annotations

from pulse_core.models import AttachmentCategory

from .normalizer import NormalizedImage


class AttachmentClassifier:
    GRID_DIVISIONS = 20

    def classify(self, image: NormalizedImage | None) -> AttachmentCategory:
        averages = self.sample_averages(image)
        if averages is None:
            return AttachmentCategory.UNKNOWN
        avg_r, avg_g, avg_b = averages
        if avg_r > 140 and avg_g > 120 and avg_b > 110:
            return AttachmentCategory.SKIN
        if avg_b > avg_r + 30:
            return AttachmentCategory.EYE
        return AttachmentCategory.UNKNOWN

    def sample_averages(self, image: NormalizedImage | None) -> tuple[int, int, int] | None:
        if image is None:
            return None
        try:
            rgb = image.image if image.image.mode == "RGB" else image.image.convert("RGB")
            pixels = rgb.load()
        except (OSError, ValueError):
            return None
        if pixels is None:
            return None

        width, height = rgb.size
        step_x = max(1, width // self.GRID_DIVISIONS)
        step_y = max(1, height // self.GRID_DIVISIONS)
        red = green = blue = count = 0
        for y in range(0, height, step_y):
            for x in range(0, width, step_x):
                r, g, b = pixels[x, y][:3]
                red += r
                green += g
                blue += b
                count += 1
        if count == 0:
            return None
        return red // count, green // count, blue // count
