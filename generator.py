"""
generator.py
Оркестратор: изображение -> поле темноты -> раскладка -> таблица путей -> последовательность.
Раскладка и таблица путей кэшируются и всегда пересобираются вместе.
"""
import threading
from dataclasses import fields, replace
from typing import Callable, Optional

import numpy as np

from config import StringArtConfig
from errors import InvalidConfiguration
from image_processor import ImageProcessor, check_image
from layout import Layout, layout_anchors
from path_table import PathTable
from sequencer import GenerationResult, Sequencer

# Поля, смена которых инвалидирует раскладку и таблицу путей
LAYOUT_FIELDS = {"NAILS", "SHAPE", "PEG_RADIUS", "BASE_ID", "MIN_SEPARATION"}


class StringArtGenerator:
    def __init__(self, config: Optional[StringArtConfig] = None):
        self.cfg = config or StringArtConfig()
        self.img_proc = ImageProcessor(self.cfg)
        self.sequencer = Sequencer(self.cfg)
        self._table: Optional[PathTable] = None

    @property
    def path_table(self) -> Optional[PathTable]:
        return self._table

    @property
    def layout(self) -> Optional[Layout]:
        return self._table.layout if self._table is not None else None

    def configure(self, **changes) -> "StringArtGenerator":
        """
        Меняет настройки; изменения рамы сбрасывают раскладку и таблицу путей.
        Сначала проверяется копия: отвергнутое изменение не трогает общий конфиг.
        """
        known = {f.name for f in fields(self.cfg)}
        for name in changes:
            if name not in known:
                raise InvalidConfiguration(name, "неизвестный параметр")
        replace(self.cfg, **changes).validate()

        for name, value in changes.items():
            setattr(self.cfg, name, value)
        if LAYOUT_FIELDS.intersection(changes):
            self._table = None
        return self

    def prepare(self, width: int, height: int) -> PathTable:
        """Раскладка + таблица путей под поле width x height (из кэша, если ничего не менялось)."""
        self.cfg.validate(width, height)
        layout = layout_anchors(
            self.cfg.NAILS,
            self.cfg.resolve_shape(width, height),
            peg_radius=self.cfg.PEG_RADIUS,
            base_id=self.cfg.BASE_ID,
        )
        if (
            self._table is None
            or not self._table.matches(layout, width, height)
            or self._table.min_separation != self.cfg.MIN_SEPARATION
        ):
            self._table = PathTable.build(layout, width, height, self.cfg.MIN_SEPARATION, workers=self.cfg.WORKERS)
        return self._table

    def generate(
        self,
        image: np.ndarray,
        positive_mask: Optional[np.ndarray] = None,
        negative_mask: Optional[np.ndarray] = None,
        rng: Optional[np.random.Generator] = None,
        cancel: Optional[threading.Event] = None,
        on_step: Optional[Callable[[int, int, float], None]] = None,
    ) -> GenerationResult:
        image = check_image(image)
        height, width = image.shape[:2]
        self.cfg.validate(width, height)

        darkness = self.img_proc.preprocess(image)
        table = self.prepare(width, height)
        return self.sequencer.generate(
            darkness, table,
            positive_mask=positive_mask,
            negative_mask=negative_mask,
            rng=rng,
            cancel=cancel,
            on_step=on_step,
        )
