"""
sequencer.py
Жадный выбор последовательности гвоздей по остаточному полю темноты.
На каждом шаге: кандидаты -> фитнес по предрасчитанным путям -> лучший путь -> вычитание чернил.
Внешний цикл строго последовательный; оценка кандидатов векторизована.
"""
import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

import numpy as np

from config import StringArtConfig
from errors import GenerationCancelled, InvalidConfiguration, InvalidInput
from layout import Layout
from path_table import PathTable


class StopReason(Enum):
    BUDGET = "budget"        # Исчерпан бюджет итераций
    EXHAUSTED = "exhausted"  # Остаточная темнота <= 0
    NO_GAIN = "no_gain"      # Лучший кандидат не даёт положительного фитнеса


@dataclass
class GenerationResult:
    start: int
    sequence: Tuple[int, ...]
    residual: np.ndarray
    pristine: np.ndarray
    stop_reason: StopReason
    scores: List[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.sequence)

    def segments(self) -> List[Tuple[int, int]]:
        """Последовательные отрезки (откуда, куда) начиная со стартового гвоздя."""
        anchors = (self.start,) + self.sequence
        return list(zip(anchors[:-1], anchors[1:]))

    def points(self, layout: Layout) -> List[Tuple[int, int]]:
        anchors = (self.start,) + self.sequence
        return [(layout.anchor(a).x, layout.anchor(a).y) for a in anchors]


def score_paths(values: np.ndarray, offsets: np.ndarray, ink_weight: float, lightness_penalty: float = 0.0,
                reward: Optional[np.ndarray] = None, forbidden: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Фитнес каждого склеенного пути (начала путей - offsets).

    values     - остаточная темнота вдоль путей
    reward     - пиксели, где темнота засчитывается (позитивная маска)
    forbidden  - пиксели, где любая нить только штрафуется (негативная маска)

    База: сумма темноты. Штраф: lightness_penalty * избыток чернил,
    избыток = max(0, ink_weight - остаток); в запрещённой зоне избыток = весь ink_weight.
    """
    if len(offsets) == 0:
        return np.empty(0, dtype=np.float64)

    if lightness_penalty > 0:
        excess = np.maximum(ink_weight - values, 0.0)
        contrib = values - lightness_penalty * excess
    else:
        contrib = values.astype(np.float64, copy=True)

    if reward is not None:
        contrib = np.where(reward, contrib, 0.0)
    if forbidden is not None:
        contrib = np.where(forbidden, -lightness_penalty * ink_weight, contrib)

    return np.add.reduceat(contrib, offsets)


def sample_size(count: int, fraction: float) -> int:
    """round(count * fraction) с округлением половин вверх, но не меньше одного кандидата."""
    return max(1, int(math.floor(count * fraction + 0.5)))


def _check_mask(mask, shape: Tuple[int, int], name: str) -> Optional[np.ndarray]:
    if mask is None:
        return None
    mask = np.asarray(mask, dtype=bool)
    if mask.shape != shape:
        raise InvalidInput(f"{name}: форма маски {mask.shape} не совпадает с полем {shape}")
    return mask.ravel()


class Sequencer:
    def __init__(self, config: StringArtConfig):
        self.cfg = config

    def _resolve_seed(self, path_table: PathTable, rng: np.random.Generator) -> int:
        layout = path_table.layout
        if self.cfg.SEED_NAIL is None:
            return layout.base_id + int(rng.integers(len(layout)))
        if not layout.base_id <= self.cfg.SEED_NAIL < layout.base_id + len(layout):
            raise InvalidConfiguration("SEED_NAIL", f"id {self.cfg.SEED_NAIL} вне диапазона раскладки")
        return self.cfg.SEED_NAIL

    def _sample(self, candidates: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        """Равномерная выборка round(|C| * TIME_SAVER) кандидатов с сохранением порядка перебора."""
        if self.cfg.TIME_SAVER >= 1.0:
            return candidates
        keep = sample_size(len(candidates), self.cfg.TIME_SAVER)
        chosen = np.sort(rng.choice(len(candidates), size=keep, replace=False))
        return candidates[chosen]

    def generate(
        self,
        darkness: np.ndarray,
        path_table: PathTable,
        positive_mask: Optional[np.ndarray] = None,
        negative_mask: Optional[np.ndarray] = None,
        rng: Optional[np.random.Generator] = None,
        cancel: Optional[threading.Event] = None,
        on_step: Optional[Callable[[int, int, float], None]] = None,
    ) -> GenerationResult:
        """
        Основной цикл. Детерминирован при TIME_SAVER = 1; выборка кандидатов
        и случайный стартовый гвоздь берутся только из явного rng.
        """
        if darkness is None:
            raise InvalidInput("Поле темноты не передано (None)")
        darkness = np.asarray(darkness)
        if darkness.size == 0 or darkness.ndim != 2:
            raise InvalidInput(f"Ожидается непустое поле HxW, получено {darkness.shape}")
        height, width = darkness.shape
        self.cfg.validate(width, height)
        if darkness.shape != path_table.shape:
            raise InvalidInput(f"Поле {darkness.shape} не совпадает с таблицей путей {path_table.shape}")
        if np.any(darkness < 0):
            raise InvalidInput("Поле темноты содержит отрицательные значения")

        reward = _check_mask(positive_mask, darkness.shape, "positive_mask")
        forbidden = _check_mask(negative_mask, darkness.shape, "negative_mask")
        fitness_mode = self.cfg.LIGHTNESS_PENALTY > 0 or reward is not None or forbidden is not None

        if rng is None:
            rng = np.random.default_rng(self.cfg.RANDOM_SEED)

        pristine = darkness.astype(np.float64, copy=True)
        residual = pristine.copy()
        flat = residual.reshape(-1)
        ink = float(self.cfg.INK_WEIGHT)

        current = self._resolve_seed(path_table, rng)
        start = current
        sequence: List[int] = []
        scores: List[float] = []
        deadline = time.monotonic() + self.cfg.TIMEOUT if self.cfg.TIMEOUT is not None else None
        reason = StopReason.BUDGET

        for iteration in range(self.cfg.ITERATIONS):
            if cancel is not None and cancel.is_set():
                raise GenerationCancelled("отменено вызывающим кодом", iteration)
            if deadline is not None and time.monotonic() > deadline:
                raise GenerationCancelled(f"превышен таймаут {self.cfg.TIMEOUT} с", iteration)

            if flat.sum() <= 0:
                reason = StopReason.EXHAUSTED
                break

            candidates = self._sample(path_table.candidates(current), rng)
            indices, offsets = path_table.gather(current, candidates)
            fitness = score_paths(
                flat[indices], offsets, ink, self.cfg.LIGHTNESS_PENALTY,
                reward=reward[indices] if reward is not None else None,
                forbidden=forbidden[indices] if forbidden is not None else None,
            )

            # argmax берёт первый максимум - порядок перебора кандидатов
            best = int(np.argmax(fitness))
            best_score = float(fitness[best])
            if fitness_mode and best_score <= 0:
                reason = StopReason.NO_GAIN
                break

            chosen = int(candidates[best])
            path = path_table.flat_indices(current, chosen)
            flat[path] = np.maximum(flat[path] - ink, 0.0)

            sequence.append(chosen)
            scores.append(best_score)
            current = chosen
            if on_step is not None:
                on_step(iteration, chosen, best_score)

        return GenerationResult(
            start=start,
            sequence=tuple(sequence),
            residual=residual,
            pristine=pristine,
            stop_reason=reason,
            scores=scores,
        )
