"""
layout.py
Раскладка якорей (гвоздей/крючков) по периметру рамы.
Раскладка - чистая функция от (count, shape, peg_radius, base_id).
"""
import math
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np

from errors import InternalInconsistency, InvalidConfiguration


@dataclass(frozen=True)
class Anchor:
    id: int
    x: int
    y: int


@dataclass(frozen=True)
class CircleShape:
    """Круглая рама. Пустые параметры подгоняются под размер поля в fit()."""

    center: Optional[Tuple[float, float]] = None
    radius: Optional[float] = None

    def fit(self, width: int, height: int) -> "CircleShape":
        radius = self.radius if self.radius is not None else 0.5 * min(width, height)
        center = self.center if self.center is not None else (0.5 * width, 0.5 * height)
        return CircleShape(center=(float(center[0]), float(center[1])), radius=float(radius))

    @classmethod
    def around(cls, width: int, height: int) -> "CircleShape":
        return cls().fit(width, height)


@dataclass(frozen=True)
class RectangleShape:
    """Прямоугольная рама, обход сверху -> справа -> снизу -> слева."""

    width: Optional[int] = None
    height: Optional[int] = None
    origin: Tuple[int, int] = (0, 0)

    def fit(self, width: int, height: int) -> "RectangleShape":
        return RectangleShape(
            width=self.width if self.width is not None else width,
            height=self.height if self.height is not None else height,
            origin=self.origin,
        )

    @property
    def perimeter(self) -> float:
        return 2.0 * (self.width + self.height)


Shape = Union[CircleShape, RectangleShape]


@dataclass(frozen=True)
class Layout:
    anchors: Tuple[Anchor, ...]
    shape: Shape
    peg_radius: Optional[float] = None
    base_id: int = 0

    def __len__(self) -> int:
        return len(self.anchors)

    @property
    def signature(self) -> tuple:
        """Всё, от чего зависит таблица путей (кроме размеров поля)."""
        return (len(self.anchors), self.shape, self.peg_radius, self.base_id)

    @property
    def xs(self) -> np.ndarray:
        return np.array([a.x for a in self.anchors], dtype=np.int64)

    @property
    def ys(self) -> np.ndarray:
        return np.array([a.y for a in self.anchors], dtype=np.int64)

    def index_of(self, anchor_id: int) -> int:
        index = anchor_id - self.base_id
        if not 0 <= index < len(self.anchors):
            raise InternalInconsistency(f"Якоря с id {anchor_id} нет в раскладке")
        return index

    def anchor(self, anchor_id: int) -> Anchor:
        return self.anchors[self.index_of(anchor_id)]


def circle_positions(count: int, shape: CircleShape) -> list:
    cx, cy = shape.center
    step = 2 * math.pi / count
    return [
        (int(cx + shape.radius * math.cos(i * step)), int(cy + shape.radius * math.sin(i * step)))
        for i in range(count)
    ]


def peg_half_angle(count: int, radius: float, peg_radius: float) -> float:
    """Угловая полуширина колышка. Соседние колышки не должны перекрываться (2*eps < 2pi/count)."""
    if not 0 < peg_radius < radius:
        raise InvalidConfiguration("PEG_RADIUS", f"нужно 0 < {peg_radius} < {radius}")
    eps = math.asin(peg_radius / radius)
    if eps >= math.pi / count:
        raise InvalidConfiguration(
            "PEG_RADIUS", f"колышки радиуса {peg_radius} перекрываются при {count} гвоздях на радиусе {radius}"
        )
    return eps


def dual_circle_positions(count: int, shape: CircleShape, peg_radius: float) -> list:
    """
    Два якоря на колышек: края колышка под углами theta -/+ eps.
    Порядок id против часовой стрелки обходит соседние края подряд.
    """
    eps = peg_half_angle(count, shape.radius, peg_radius)
    cx, cy = shape.center
    step = 2 * math.pi / count

    positions = []
    for i in range(count):
        theta = i * step
        for angle in (theta - eps, theta + eps):
            positions.append((int(cx + shape.radius * math.cos(angle)), int(cy + shape.radius * math.sin(angle))))
    return positions


def rectangle_positions(count: int, shape: RectangleShape) -> list:
    width, height = shape.width, shape.height
    ox, oy = shape.origin
    spacing = shape.perimeter / count

    positions = []
    for i in range(count):
        p = i * spacing
        if p < width:  # верх
            x, y = p, 0
        elif p < width + height:  # правая сторона
            x, y = width, p - width
        elif p < 2 * width + height:  # низ
            x, y = width - (p - width - height), height
        else:  # левая сторона
            x, y = 0, height - (p - 2 * width - height)
        positions.append((int(ox + x), int(oy + y)))
    return positions


def layout_anchors(count: int, shape: Shape, peg_radius: Optional[float] = None, base_id: int = 0) -> Layout:
    """
    Строит раскладку. shape должна быть уже подогнана под поле (shape.fit).
    Любая смена параметров требует пересборки таблицы путей.
    """
    if count < 3:
        raise InvalidConfiguration("NAILS", f"нужно минимум 3 якоря, получено {count}")

    if isinstance(shape, CircleShape):
        if shape.center is None or shape.radius is None:
            raise InvalidConfiguration("SHAPE", "окружность не подогнана под поле (вызовите fit)")
        if not shape.radius > 0:
            raise InvalidConfiguration("SHAPE", "радиус окружности должен быть > 0")
        if peg_radius is not None:
            positions = dual_circle_positions(count, shape, peg_radius)
        else:
            positions = circle_positions(count, shape)
    elif isinstance(shape, RectangleShape):
        if shape.width is None or shape.height is None:
            raise InvalidConfiguration("SHAPE", "прямоугольник не подогнан под поле (вызовите fit)")
        if shape.width <= 0 or shape.height <= 0:
            raise InvalidConfiguration("SHAPE", "стороны прямоугольника должны быть > 0")
        if peg_radius is not None:
            raise InvalidConfiguration("PEG_RADIUS", "двусторонние колышки поддерживаются только для окружности")
        positions = rectangle_positions(count, shape)
    else:
        raise InvalidConfiguration("SHAPE", f"неизвестная фигура: {shape!r}")

    anchors = tuple(Anchor(base_id + i, x, y) for i, (x, y) in enumerate(positions))
    return Layout(anchors=anchors, shape=shape, peg_radius=peg_radius, base_id=base_id)
