"""
config.py
Централизованное хранилище настроек генератора.
Значения по умолчанию подобраны под портрет ~500x500 px и круглую раму на 200 гвоздей.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from errors import InvalidConfiguration
from layout import CircleShape, RectangleShape, Shape, peg_half_angle


class PreprocessMode(Enum):
    """Что считать "темнотой" для нити."""

    CANNY = "canny"          # Бинарная карта контуров (Canny)
    GRAYSCALE = "grayscale"  # Инвертированная яркость: тёмное = много нити


@dataclass
class StringArtConfig:
    # --- 1. РАМА (ANCHOR LAYOUT) ---
    # Количество гвоздей. Для двусторонних колышков якорей будет вдвое больше.
    NAILS: int = 200
    # Пустые параметры фигуры подгоняются под размер изображения.
    SHAPE: Shape = field(default_factory=CircleShape)
    # Радиус колышка в пикселях. None = колышки считаются точками.
    PEG_RADIUS: Optional[float] = None
    # С какого номера начинается нумерация якорей.
    BASE_ID: int = 0

    # --- 2. ТАБЛИЦА ПУТЕЙ ---
    # Пары ближе MIN_SEPARATION индексов (по кругу) не соединяются.
    MIN_SEPARATION: int = 10
    # Потоки для предрасчёта путей. None = решает ThreadPoolExecutor.
    WORKERS: Optional[int] = None

    # --- 3. PRE-PROCESSING (CANNY) ---
    PREPROCESS_MODE: PreprocessMode = PreprocessMode.CANNY
    # Сигма гауссова размытия. Ядро = 2*ceil(3*sigma)+1.
    SIGMA: float = 1.4
    # Пороги двойной бинаризации по модулю градиента.
    LOW_THRESHOLD: float = 10.0
    HIGH_THRESHOLD: float = 20.0

    # --- 4. SEQUENCER ---
    # Сколько "темноты" снимает один проход нити с каждого пикселя пути.
    INK_WEIGHT: float = 20.0
    # Бюджет итераций (максимальное число отрезков).
    ITERATIONS: int = 1000
    # Стартовый гвоздь (id). None = случайный из RANDOM_SEED.
    SEED_NAIL: Optional[int] = 0
    RANDOM_SEED: int = 42
    # Доля кандидатов, которые реально оцениваются на каждом шаге (0, 1].
    TIME_SAVER: float = 1.0
    # Штраф за нить поверх уже "светлых" пикселей. 0 = чистый поиск самого тёмного пути.
    LIGHTNESS_PENALTY: float = 0.0
    # Секунды на генерацию. None = без ограничения.
    TIMEOUT: Optional[float] = None

    # --- 5. ЭКСПОРТ ---
    STROKE_WIDTH: str = "0.3px"
    STROKE_COLOR: str = "black"
    STROKE_OPACITY: float = 0.4
    OUTPUT_SUFFIX: str = "_string_art"

    @property
    def total_anchors(self) -> int:
        return self.NAILS * 2 if self.PEG_RADIUS is not None else self.NAILS

    def resolve_shape(self, width: int, height: int) -> Shape:
        """Фигура рамы, подогнанная под поле width x height."""
        return self.SHAPE.fit(width, height)

    def validate(self, width: Optional[int] = None, height: Optional[int] = None) -> "StringArtConfig":
        """
        Жадная проверка всех предусловий. Вызывается до любой работы с пикселями.
        Размеры поля передаются, когда они уже известны.
        """
        if self.NAILS < 3:
            raise InvalidConfiguration("NAILS", f"нужно минимум 3 гвоздя, получено {self.NAILS}")
        if not self.SIGMA > 0:
            raise InvalidConfiguration("SIGMA", f"должна быть > 0, получено {self.SIGMA}")
        if self.LOW_THRESHOLD < 0:
            raise InvalidConfiguration("LOW_THRESHOLD", "не может быть отрицательным")
        if self.LOW_THRESHOLD > self.HIGH_THRESHOLD:
            raise InvalidConfiguration(
                "HIGH_THRESHOLD",
                f"HIGH_THRESHOLD ({self.HIGH_THRESHOLD}) < LOW_THRESHOLD ({self.LOW_THRESHOLD})",
            )
        if not 0.0 < self.TIME_SAVER <= 1.0:
            raise InvalidConfiguration("TIME_SAVER", f"должен лежать в (0, 1], получено {self.TIME_SAVER}")
        if not self.INK_WEIGHT > 0:
            raise InvalidConfiguration("INK_WEIGHT", "должен быть > 0")
        if self.ITERATIONS < 0:
            raise InvalidConfiguration("ITERATIONS", "не может быть отрицательным")
        if self.LIGHTNESS_PENALTY < 0:
            raise InvalidConfiguration("LIGHTNESS_PENALTY", "не может быть отрицательным")
        if self.MIN_SEPARATION < 0:
            raise InvalidConfiguration("MIN_SEPARATION", "не может быть отрицательным")
        # Каждому якорю должен остаться хотя бы один допустимый сосед.
        if self.total_anchors <= 2 * self.MIN_SEPARATION + 1:
            raise InvalidConfiguration(
                "MIN_SEPARATION",
                f"при {self.total_anchors} якорях и MIN_SEPARATION={self.MIN_SEPARATION} не остаётся ни одной пары",
            )
        if self.SEED_NAIL is not None and not (
            self.BASE_ID <= self.SEED_NAIL < self.BASE_ID + self.total_anchors
        ):
            raise InvalidConfiguration("SEED_NAIL", f"id {self.SEED_NAIL} вне диапазона якорей")
        if self.TIMEOUT is not None and not self.TIMEOUT > 0:
            raise InvalidConfiguration("TIMEOUT", "должен быть > 0")
        if self.WORKERS is not None and self.WORKERS < 1:
            raise InvalidConfiguration("WORKERS", "нужен хотя бы один поток")

        if width is not None or height is not None:
            if not width or not height or width <= 0 or height <= 0:
                raise InvalidConfiguration("SHAPE", f"размер поля должен быть > 0, получено {width}x{height}")

        if not isinstance(self.SHAPE, (CircleShape, RectangleShape)):
            raise InvalidConfiguration("SHAPE", f"неизвестная фигура: {self.SHAPE!r}")

        if self.PEG_RADIUS is not None:
            if not self.PEG_RADIUS > 0:
                raise InvalidConfiguration("PEG_RADIUS", "должен быть > 0")
            if isinstance(self.SHAPE, RectangleShape):
                raise InvalidConfiguration("PEG_RADIUS", "двусторонние колышки поддерживаются только для окружности")
            if width is not None and height is not None:
                peg_half_angle(self.NAILS, self.resolve_shape(width, height).radius, self.PEG_RADIUS)
        return self
