"""
path_table.py
Предрасчёт растровых путей нити для всех допустимых пар якорей.
Все пути лежат в одной плоской "арене" индексов пикселей (y * width + x);
пара (i, j) -> срез арены через плотные таблицы начал и длин, поиск O(1).
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Tuple

import numpy as np

from errors import InternalInconsistency, InvalidConfiguration
from layout import Layout


def rasterize_line(x0: int, y0: int, x1: int, y1: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Целочисленный Брезенхэм (ошибка стартует с dx // 2), в закрытой форме для numpy.
    Точки идут по возрастанию ведущей оси, а не от начала к концу.
    """
    steep = abs(y1 - y0) > abs(x1 - x0)
    if steep:
        x0, y0, x1, y1 = y0, x0, y1, x1
    if x0 > x1:
        x0, x1, y0, y1 = x1, x0, y1, y0

    dx = x1 - x0
    ady = abs(y1 - y0)
    ystep = 1 if y0 < y1 else -1

    k = np.arange(dx + 1, dtype=np.int64)
    if dx == 0:
        major = np.array([x0], dtype=np.int64)
        minor = np.array([y0], dtype=np.int64)
    else:
        error0 = dx // 2
        # Количество шагов по малой оси к k-й точке: ceil((k*|dy| - error0) / dx)
        minor = y0 + ystep * (-((error0 - k * ady) // dx))
        major = x0 + k

    if steep:
        return minor, major
    return major, minor


class PathTable:
    """
    Неизменяемая после сборки таблица путей. pixels(i, j) == reverse(pixels(j, i)).
    Собирается только вместе с раскладкой: смена раскладки = новая таблица.
    """

    def __init__(self, layout: Layout, width: int, height: int, min_separation: int,
                 arena: np.ndarray, starts: np.ndarray, lengths: np.ndarray):
        self.layout = layout
        self.width = width
        self.height = height
        self.min_separation = min_separation
        self._arena = arena
        self._starts = starts
        self._lengths = lengths
        self._arena.flags.writeable = False

        total = len(layout)
        index = np.arange(total, dtype=np.int64)
        self._candidates = []
        for i in range(total):
            gap = np.abs(index - i)
            admissible = (gap > min_separation) & (gap < total - min_separation)
            self._candidates.append(index[admissible] + layout.base_id)

    @property
    def total_anchors(self) -> int:
        return len(self.layout)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    @property
    def pair_count(self) -> int:
        return int(np.count_nonzero(self._starts >= 0)) // 2

    def _admissible_index(self, i: int, j: int) -> bool:
        gap = abs(i - j)
        return self.min_separation < gap < self.total_anchors - self.min_separation

    def is_admissible(self, a: int, b: int) -> bool:
        """Предикат разделения: minSep < |a - b| < total - minSep."""
        return self._admissible_index(self.layout.index_of(a), self.layout.index_of(b))

    def candidates(self, anchor_id: int) -> np.ndarray:
        """Все допустимые соседи якоря по возрастанию id."""
        return self._candidates[self.layout.index_of(anchor_id)]

    def _slice(self, i: int, j: int) -> Tuple[int, int]:
        start = self._starts[i, j]
        if start < 0:
            raise InternalInconsistency(
                f"Нет пути для пары ({self.layout.base_id + i}, {self.layout.base_id + j}): "
                "раскладка и таблица путей не совпадают"
            )
        return int(start), int(start + self._lengths[i, j])

    def flat_indices(self, a: int, b: int) -> np.ndarray:
        """Индексы пикселей пути от a к b в плоском поле (только чтение)."""
        i, j = self.layout.index_of(a), self.layout.index_of(b)
        if not self._admissible_index(i, j):
            raise InternalInconsistency(f"Пара ({a}, {b}) не проходит предикат разделения")
        start, stop = self._slice(i, j)
        path = self._arena[start:stop]
        # В арене хранится направление от меньшего индекса к большему
        return path if i < j else path[::-1]

    def pixels(self, a: int, b: int) -> np.ndarray:
        """Путь как массив (x, y) формы (N, 2)."""
        flat = self.flat_indices(a, b)
        return np.column_stack((flat % self.width, flat // self.width))

    def gather(self, anchor_id: int, candidate_ids: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Склеивает пути от anchor_id ко всем кандидатам.
        Возвращает (индексы пикселей, смещения начала каждого пути) для np.add.reduceat.
        """
        i = self.layout.index_of(anchor_id)
        chunks = []
        offsets = np.empty(len(candidate_ids), dtype=np.int64)
        position = 0
        for n, candidate in enumerate(candidate_ids):
            start, stop = self._slice(i, self.layout.index_of(int(candidate)))
            chunks.append(self._arena[start:stop])
            offsets[n] = position
            position += stop - start
        if not chunks:
            return np.empty(0, dtype=self._arena.dtype), offsets
        return np.concatenate(chunks), offsets

    def matches(self, layout: Layout, width: int, height: int) -> bool:
        return self.layout.signature == layout.signature and (self.width, self.height) == (width, height)

    @classmethod
    def build(cls, layout: Layout, width: int, height: int, min_separation: int,
              workers: Optional[int] = None) -> "PathTable":
        """
        O(N^2) пар x O(длина хорды). Строки таблицы считаются в пуле потоков
        и сливаются в арену по позиции.
        """
        if width <= 0 or height <= 0:
            raise InvalidConfiguration("SHAPE", f"размер поля должен быть > 0, получено {width}x{height}")
        if min_separation < 0:
            raise InvalidConfiguration("MIN_SEPARATION", "не может быть отрицательным")

        total = len(layout)
        xs = np.clip(layout.xs, 0, width - 1)
        ys = np.clip(layout.ys, 0, height - 1)
        dtype = np.int32 if width * height < 2 ** 31 else np.int64

        def admissible(i: int, j: int) -> bool:
            return min_separation < abs(i - j) < total - min_separation

        def rasterize_row(i: int) -> Tuple[int, List[Tuple[int, np.ndarray]]]:
            row = []
            for j in range(i + 1, total):
                if not admissible(i, j):
                    continue
                px, py = rasterize_line(int(xs[i]), int(ys[i]), int(xs[j]), int(ys[j]))
                flat = (py * width + px).astype(dtype)
                # Ориентируем путь от якоря i к якорю j
                if px[0] != xs[i] or py[0] != ys[i]:
                    flat = flat[::-1]
                row.append((j, flat))
            return i, row

        rows: List[List[Tuple[int, np.ndarray]]] = [[] for _ in range(total)]
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(rasterize_row, i) for i in range(total)]
            for future in as_completed(futures):
                i, row = future.result()
                rows[i] = row

        starts = np.full((total, total), -1, dtype=np.int64)
        lengths = np.zeros((total, total), dtype=np.int64)
        chunks = []
        position = 0
        for i, row in enumerate(rows):
            for j, flat in row:
                starts[i, j] = starts[j, i] = position
                lengths[i, j] = lengths[j, i] = len(flat)
                chunks.append(flat)
                position += len(flat)

        arena = np.ascontiguousarray(np.concatenate(chunks)) if chunks else np.empty(0, dtype=dtype)
        return cls(layout, width, height, min_separation, arena, starts, lengths)
