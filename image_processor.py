"""
image_processor.py
Модуль подготовки поля "темноты" для генератора нити.
Pipeline (Canny): Grayscale -> Gauss -> Sobel -> Non-Max Suppression -> Double Threshold -> Hysteresis.
Каждая стадия - чистая функция над явным массивом, исходный буфер не мутируется.
"""
import math
from typing import Tuple

import cv2
import numpy as np

from config import PreprocessMode, StringArtConfig
from errors import InvalidConfiguration, InvalidInput

STRONG = 255
WEAK = 128

# Допуск на шум плавающей точки при отбрасывании дробной части
_TRUNC_EPS = 1e-9

# Соседи для каждого из 4 секторов направления градиента: (dy, dx) и противоположный.
_SECTOR_OFFSETS = (
    (0, 1),   # 0°
    (1, 1),   # 45°
    (1, 0),   # 90°
    (1, -1),  # 135°
)


def to_level(values: np.ndarray) -> np.ndarray:
    """Целый 8-битный уровень: отбрасывание дробной части, как при записи в битмап."""
    return np.floor(values + _TRUNC_EPS)


def to_grayscale(img: np.ndarray) -> np.ndarray:
    """Перцептивная яркость 0.299R + 0.587G + 0.114B, дробная часть отбрасывается (8-битный серый)."""
    if img.ndim == 2:
        return img.astype(np.float64)
    rgb = img[..., :3].astype(np.float64)
    gray = 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]
    return to_level(gray)


def gaussian_kernel(sigma: float) -> np.ndarray:
    """Квадратное ядро размера 2*ceil(3*sigma)+1, сумма весов = 1."""
    if not sigma > 0:
        raise InvalidConfiguration("SIGMA", f"должна быть > 0, получено {sigma}")
    size = 2 * int(math.ceil(3 * sigma)) + 1
    radius = size // 2
    coords = np.arange(-radius, radius + 1, dtype=np.float64)
    yy, xx = np.meshgrid(coords, coords, indexing="ij")
    kernel = np.exp(-(xx ** 2 + yy ** 2) / (2 * sigma ** 2))
    return kernel / kernel.sum()


def gaussian_blur(gray: np.ndarray, sigma: float) -> np.ndarray:
    """
    Размытие с нормировкой на краях: за границей - нули, результат делится
    на сумму реально попавших в изображение весов.
    """
    kernel = gaussian_kernel(sigma)
    src = gray.astype(np.float64)
    weighted = cv2.filter2D(src, cv2.CV_64F, kernel, borderType=cv2.BORDER_CONSTANT)
    mass = cv2.filter2D(np.ones_like(src), cv2.CV_64F, kernel, borderType=cv2.BORDER_CONSTANT)
    return to_level(weighted / mass)


def compute_gradients(blurred: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Собель 3x3. Возвращает (модуль, направление в радианах).
    Внешняя рамка в 1 пиксель не считается и остаётся нулевой.
    """
    h, w = blurred.shape
    magnitude = np.zeros((h, w), dtype=np.float64)
    direction = np.zeros((h, w), dtype=np.float64)
    if h < 3 or w < 3:
        return magnitude, direction

    p = blurred.astype(np.float64)
    top_l, top_c, top_r = p[:-2, :-2], p[:-2, 1:-1], p[:-2, 2:]
    mid_l, mid_r = p[1:-1, :-2], p[1:-1, 2:]
    bot_l, bot_c, bot_r = p[2:, :-2], p[2:, 1:-1], p[2:, 2:]

    gx = (top_r + 2 * mid_r + bot_r) - (top_l + 2 * mid_l + bot_l)
    gy = (bot_l + 2 * bot_c + bot_r) - (top_l + 2 * top_c + top_r)

    magnitude[1:-1, 1:-1] = np.hypot(gx, gy)
    direction[1:-1, 1:-1] = np.arctan2(gy, gx)
    return magnitude, direction


def direction_sectors(direction: np.ndarray) -> np.ndarray:
    """Квантование направления в 4 сектора по ±22.5° вокруг 0°, 45°, 90°, 135°."""
    degrees = np.mod(np.degrees(direction), 180.0)
    return (np.floor((degrees + 22.5) / 45.0).astype(np.int64)) % 4


def non_maximum_suppression(magnitude: np.ndarray, direction: np.ndarray) -> np.ndarray:
    """Пиксель выживает, только если он не меньше обоих соседей вдоль градиента."""
    h, w = magnitude.shape
    suppressed = np.zeros_like(magnitude)
    if h < 3 or w < 3:
        return suppressed

    sectors = direction_sectors(direction)[1:-1, 1:-1]
    center = magnitude[1:-1, 1:-1]
    keep = np.zeros_like(center, dtype=bool)

    for sector, (dy, dx) in enumerate(_SECTOR_OFFSETS):
        forward = magnitude[1 + dy:h - 1 + dy, 1 + dx:w - 1 + dx]
        backward = magnitude[1 - dy:h - 1 - dy, 1 - dx:w - 1 - dx]
        in_sector = sectors == sector
        keep |= in_sector & (center >= forward) & (center >= backward)

    suppressed[1:-1, 1:-1] = np.where(keep, center, 0.0)
    return suppressed


def double_threshold(suppressed: np.ndarray, low: float, high: float) -> np.ndarray:
    """Три класса: сильные (255), слабые (128), пусто (0). Нулевой градиент краем не бывает."""
    if low > high:
        raise InvalidConfiguration("HIGH_THRESHOLD", f"HIGH_THRESHOLD ({high}) < LOW_THRESHOLD ({low})")
    nonzero = suppressed > 0
    strong = nonzero & (suppressed >= high)
    weak = nonzero & (suppressed >= low) & ~strong

    classes = np.zeros(suppressed.shape, dtype=np.uint8)
    classes[weak] = WEAK
    classes[strong] = STRONG
    return classes


def track_edges(classes: np.ndarray) -> np.ndarray:
    """
    Гистерезис: каждый сильный пиксель запускает 8-связную заливку (стек, без рекурсии),
    которая повышает соседние слабые пиксели до сильных. Итог - бинарная карта 0/255.
    """
    h, w = classes.shape
    edges = classes.copy()
    stack = list(zip(*np.nonzero(edges == STRONG)))

    while stack:
        cy, cx = stack.pop()
        for dy in (-1, 0, 1):
            ny = cy + dy
            if ny < 0 or ny >= h:
                continue
            for dx in (-1, 0, 1):
                nx = cx + dx
                if 0 <= nx < w and edges[ny, nx] == WEAK:
                    edges[ny, nx] = STRONG
                    stack.append((ny, nx))

    return np.where(edges == STRONG, STRONG, 0).astype(np.uint8)


def canny_edges(gray: np.ndarray, sigma: float, low: float, high: float) -> np.ndarray:
    """Полный детектор Canny над серым изображением. Возвращает карту 0/255."""
    if not sigma > 0:
        raise InvalidConfiguration("SIGMA", f"должна быть > 0, получено {sigma}")
    if low > high:
        raise InvalidConfiguration("HIGH_THRESHOLD", f"HIGH_THRESHOLD ({high}) < LOW_THRESHOLD ({low})")

    blurred = gaussian_blur(gray, sigma)
    magnitude, direction = compute_gradients(blurred)
    suppressed = non_maximum_suppression(magnitude, direction)
    classes = double_threshold(suppressed, low, high)
    return track_edges(classes)


def check_image(img) -> np.ndarray:
    if img is None:
        raise InvalidInput("Изображение не передано (None)")
    img = np.asarray(img)
    if img.size == 0:
        raise InvalidInput("Пустое изображение")
    if img.ndim not in (2, 3) or (img.ndim == 3 and img.shape[2] not in (1, 3, 4)):
        raise InvalidInput(f"Ожидается HxW, HxWx3 или HxWx4, получено {img.shape}")
    if img.ndim == 3 and img.shape[2] == 1:
        img = img[..., 0]
    return img


class ImageProcessor:
    def __init__(self, config: StringArtConfig):
        self.cfg = config

    def load_image(self, path: str) -> np.ndarray:
        """Декодирование файла в RGB (OpenCV читает BGR)."""
        img = cv2.imread(path, cv2.IMREAD_COLOR)
        if img is None:
            raise FileNotFoundError(f"Файл не найден: {path}")
        return cv2.cvtColor(img, cv2.COLOR_BGR2RGB)

    def load_mask(self, path: str) -> np.ndarray:
        """Маска весов из файла: светлые пиксели = True."""
        img = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
        if img is None:
            raise FileNotFoundError(f"Файл не найден: {path}")
        return img > 127

    def preprocess(self, img: np.ndarray) -> np.ndarray:
        """
        Превращает декодированное изображение в поле темноты того же размера (float64).
        Чем больше значение, тем сильнее пиксель притягивает нить.
        """
        # Конфигурация проверяется до любой работы с пикселями
        self.cfg.validate()
        img = check_image(img)

        gray = to_grayscale(img)

        if self.cfg.PREPROCESS_MODE is PreprocessMode.GRAYSCALE:
            return 255.0 - gray

        edges = canny_edges(gray, self.cfg.SIGMA, self.cfg.LOW_THRESHOLD, self.cfg.HIGH_THRESHOLD)
        return edges.astype(np.float64)
