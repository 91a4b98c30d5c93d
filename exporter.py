"""
exporter.py
Модуль экспорта готовой последовательности.
"""
from pathlib import Path
from typing import Tuple

import cv2
import numpy as np
import svgwrite

from config import StringArtConfig
from layout import Layout
from sequencer import GenerationResult


class SequenceExporter:
    def __init__(self, config: StringArtConfig):
        self.cfg = config

    def save_sequence(self, result: GenerationResult, output_path: str):
        """Одна строка = один гвоздь, первая строка - стартовый."""
        lines = [str(result.start)] + [str(a) for a in result.sequence]
        Path(output_path).write_text("\n".join(lines) + "\n", encoding="utf-8")

    def save_to_svg(self, layout: Layout, result: GenerationResult, output_path: str, img_size: Tuple[int, int]):
        h, w = img_size

        dwg = svgwrite.Drawing(output_path, size=(w, h), profile='tiny')
        dwg.add(dwg.rect(insert=(0, 0), size=(w, h), fill="white"))

        # Гвозди
        nails = dwg.g(fill=self.cfg.STROKE_COLOR)
        for anchor in layout.anchors:
            nails.add(dwg.circle(center=(anchor.x, anchor.y), r=1))
        dwg.add(nails)

        pts = result.points(layout)
        if len(pts) >= 2:
            # SVG Path Syntax: M x y L x y ...
            d_commands = [f"M {pts[0][0]},{pts[0][1]}"]
            for p in pts[1:]:
                d_commands.append(f"L {p[0]},{p[1]}")

            dwg.add(dwg.path(
                d=" ".join(d_commands),
                stroke=self.cfg.STROKE_COLOR,
                stroke_width=self.cfg.STROKE_WIDTH,
                stroke_opacity=self.cfg.STROKE_OPACITY,
                fill="none",
            ))
        dwg.save()

    def save_residual(self, result: GenerationResult, output_path: str):
        """Диагностика: остаток темноты как 8-битная картинка (темнее = больше осталось)."""
        residual = np.clip(result.residual, 0, 255)
        view = (255 - residual).astype(np.uint8)
        if not cv2.imwrite(output_path, view):
            raise OSError(f"Не удалось записать {output_path}")

    def process_and_save(self, layout: Layout, result: GenerationResult, output_stem: str,
                         img_size: Tuple[int, int]) -> int:
        self.save_sequence(result, output_stem + ".txt")
        self.save_to_svg(layout, result, output_stem + ".svg", img_size)
        self.save_residual(result, output_stem + "_residual.png")
        return len(result)
