"""
tests.py
Модуль автоматического тестирования (Unit Tests).
Запуск: python -m unittest tests  (или pytest).
"""
import argparse
import math
import tempfile
import threading
import time
import unittest
from pathlib import Path

import numpy as np
import cv2

from cli import ConsoleApp, seed_nail_arg
from config import PreprocessMode, StringArtConfig
from errors import GenerationCancelled, InternalInconsistency, InvalidConfiguration, InvalidInput
from exporter import SequenceExporter
from generator import StringArtGenerator
from image_processor import (
    ImageProcessor,
    compute_gradients,
    direction_sectors,
    double_threshold,
    gaussian_blur,
    gaussian_kernel,
    to_grayscale,
    to_level,
    track_edges,
)
from layout import CircleShape, RectangleShape, layout_anchors
from path_table import PathTable, rasterize_line
from sequencer import Sequencer, StopReason, sample_size, score_paths


def small_config(**overrides) -> StringArtConfig:
    """Конфиг под маленькие тестовые поля: мало гвоздей, мало итераций."""
    cfg = StringArtConfig(NAILS=24, MIN_SEPARATION=2, ITERATIONS=20, INK_WEIGHT=20.0, WORKERS=2)
    for name, value in overrides.items():
        setattr(cfg, name, value)
    return cfg


def build_table(cfg: StringArtConfig, width: int, height: int) -> PathTable:
    layout = layout_anchors(cfg.NAILS, cfg.resolve_shape(width, height), cfg.PEG_RADIUS, cfg.BASE_ID)
    return PathTable.build(layout, width, height, cfg.MIN_SEPARATION, workers=cfg.WORKERS)


class TestConfig(unittest.TestCase):

    def test_config_validity(self):
        """Базовый конфиг проходит проверку."""
        base_cfg = StringArtConfig()
        self.assertIs(base_cfg.validate(), base_cfg)
        self.assertGreaterEqual(base_cfg.HIGH_THRESHOLD, base_cfg.LOW_THRESHOLD, "HIGH должен быть >= LOW")
        self.assertGreater(base_cfg.SIGMA, 0)

    def test_invalid_values_name_parameter(self):
        cases = {
            "NAILS": {"NAILS": 2},
            "SIGMA": {"SIGMA": 0.0},
            "HIGH_THRESHOLD": {"LOW_THRESHOLD": 30.0, "HIGH_THRESHOLD": 20.0},
            "TIME_SAVER": {"TIME_SAVER": 0.0},
            "INK_WEIGHT": {"INK_WEIGHT": 0.0},
            "MIN_SEPARATION": {"MIN_SEPARATION": 100},
            "SEED_NAIL": {"SEED_NAIL": 500},
        }
        for parameter, overrides in cases.items():
            with self.subTest(parameter=parameter):
                cfg = StringArtConfig(**overrides)
                with self.assertRaises(InvalidConfiguration) as ctx:
                    cfg.validate()
                self.assertEqual(ctx.exception.parameter, parameter)

    def test_time_saver_upper_bound(self):
        with self.assertRaises(InvalidConfiguration):
            StringArtConfig(TIME_SAVER=1.5).validate()
        StringArtConfig(TIME_SAVER=1.0).validate()

    def test_peg_radius_rules(self):
        with self.assertRaises(InvalidConfiguration):
            StringArtConfig(SHAPE=RectangleShape(), PEG_RADIUS=2.0).validate()
        with self.assertRaises(InvalidConfiguration):
            StringArtConfig(PEG_RADIUS=60.0).validate(100, 100)
        StringArtConfig(PEG_RADIUS=0.5).validate(100, 100)

    def test_overlapping_pegs_rejected(self):
        """Колышки шире шага между гвоздями ломают порядок обхода id."""
        cfg = StringArtConfig(NAILS=6, PEG_RADIUS=40.0, MIN_SEPARATION=1)
        cfg.validate()
        with self.assertRaises(InvalidConfiguration) as ctx:
            cfg.validate(100, 100)
        self.assertEqual(ctx.exception.parameter, "PEG_RADIUS")
        with self.assertRaises(InvalidConfiguration):
            StringArtConfig(PEG_RADIUS=2.0).validate(100, 100)

    def test_field_size_must_be_positive(self):
        with self.assertRaises(InvalidConfiguration):
            StringArtConfig().validate(0, 10)

    def test_invalid_configuration_is_value_error(self):
        self.assertTrue(issubclass(InvalidConfiguration, ValueError))
        self.assertTrue(issubclass(InternalInconsistency, RuntimeError))


class TestImageProcessor(unittest.TestCase):

    def setUp(self):
        self.config = StringArtConfig()
        self.processor = ImageProcessor(self.config)

        # Фейковое изображение: белый квадрат на чёрном фоне
        self.test_img = np.zeros((60, 60, 3), dtype=np.uint8)
        cv2.rectangle(self.test_img, (15, 15), (45, 45), (255, 255, 255), -1)

    def test_kernel_normalization(self):
        """Сумма весов ядра = 1 для любой sigma > 0."""
        for sigma in (0.3, 0.5, 1.0, 1.4, 2.7, 5.0):
            with self.subTest(sigma=sigma):
                kernel = gaussian_kernel(sigma)
                self.assertAlmostEqual(kernel.sum(), 1.0, places=12)
                self.assertEqual(kernel.shape[0], 2 * math.ceil(3 * sigma) + 1)

    def test_kernel_rejects_non_positive_sigma(self):
        with self.assertRaises(InvalidConfiguration):
            gaussian_kernel(0.0)

    def test_blur_renormalizes_borders(self):
        """Края не темнеют: веса за границей не учитываются."""
        flat = np.full((7, 9), 100.0)
        blurred = gaussian_blur(flat, 2.0)
        self.assertTrue(np.all(blurred == 100.0))

    def test_grayscale_is_perceptual(self):
        img = np.array([[[255, 0, 0], [0, 255, 0], [0, 0, 255]]], dtype=np.uint8)
        gray = to_grayscale(img)
        np.testing.assert_array_equal(gray[0], [76.0, 149.0, 29.0])

    def test_levels_are_truncated(self):
        """Дробная часть отбрасывается; шум плавающей точки не роняет уровень."""
        np.testing.assert_array_equal(to_level(np.array([2.7, 99.99999999999, 3.0, 254.5])), [2.0, 100.0, 3.0, 254.0])
        img = np.array([[[0, 0, 255], [128, 128, 128]]], dtype=np.uint8)
        np.testing.assert_array_equal(to_grayscale(img)[0], [29.0, 128.0])

    def test_uniform_image_has_no_edges(self):
        """Однотонная картинка -> поле полностью нулевое при любых параметрах."""
        gray_img = np.full((40, 50, 3), 128, dtype=np.uint8)
        for sigma, low, high in ((0.5, 1.0, 2.0), (1.4, 10.0, 20.0), (3.0, 0.0, 0.0)):
            with self.subTest(sigma=sigma, low=low, high=high):
                self.config.SIGMA, self.config.LOW_THRESHOLD, self.config.HIGH_THRESHOLD = sigma, low, high
                field = self.processor.preprocess(gray_img)
                self.assertEqual(field.shape, (40, 50))
                self.assertEqual(field.sum(), 0.0)

    def test_edges_of_square(self):
        field = self.processor.preprocess(self.test_img)
        self.assertEqual(len(field.shape), 2, "Результат должен быть одноканальным")
        self.assertTrue(field.max() > 0, "Контур квадрата должен найтись")
        self.assertTrue(np.all(np.isin(np.unique(field), [0.0, 255.0])), "Карта краёв должна быть бинарной")
        # Внешняя рамка не обрабатывается
        self.assertEqual(field[0, :].sum() + field[-1, :].sum() + field[:, 0].sum() + field[:, -1].sum(), 0)
        # Внутри квадрата краёв нет
        self.assertEqual(field[25:35, 25:35].sum(), 0)

    def test_tiny_image_skips_gradients(self):
        magnitude, direction = compute_gradients(np.array([[0.0, 255.0], [255.0, 0.0]]))
        self.assertEqual(magnitude.sum(), 0)
        field = self.processor.preprocess(np.array([[0, 255], [255, 0]], dtype=np.uint8))
        self.assertEqual(field.sum(), 0)

    def test_direction_sectors(self):
        angles = np.array([0.0, math.pi / 4, math.pi / 2, 3 * math.pi / 4, -math.pi / 4, math.pi, 0.3])
        np.testing.assert_array_equal(direction_sectors(angles), [0, 1, 2, 3, 3, 0, 0])

    def test_double_threshold_classes(self):
        suppressed = np.array([[0.0, 5.0, 10.0, 19.9, 20.0, 80.0]])
        classes = double_threshold(suppressed, 10.0, 20.0)
        np.testing.assert_array_equal(classes[0], [0, 0, 128, 128, 255, 255])

    def test_hysteresis_promotes_connected_weak(self):
        classes = np.zeros((5, 7), dtype=np.uint8)
        classes[2, 1] = 255
        classes[2, 2] = 128
        classes[3, 3] = 128   # по диагонали от слабого - тоже связан
        classes[0, 6] = 128   # изолированный слабый
        edges = track_edges(classes)
        self.assertEqual(edges[2, 2], 255)
        self.assertEqual(edges[3, 3], 255)
        self.assertEqual(edges[0, 6], 0)
        self.assertEqual(classes[2, 2], 128, "Вход не должен мутироваться")

    def test_grayscale_mode(self):
        self.config.PREPROCESS_MODE = PreprocessMode.GRAYSCALE
        field = self.processor.preprocess(self.test_img)
        self.assertEqual(field[0, 0], 255.0)
        self.assertEqual(field[30, 30], 0.0)

    def test_invalid_input(self):
        with self.assertRaises(InvalidInput):
            self.processor.preprocess(None)
        with self.assertRaises(InvalidInput):
            self.processor.preprocess(np.zeros((0, 0, 3), dtype=np.uint8))

    def test_configuration_checked_before_input(self):
        """Ошибка конфигурации важнее любых проблем с пикселями."""
        self.config.SIGMA = -1.0
        with self.assertRaises(InvalidConfiguration):
            self.processor.preprocess(None)
        self.config.SIGMA = 1.0
        self.config.LOW_THRESHOLD, self.config.HIGH_THRESHOLD = 50.0, 10.0
        with self.assertRaises(InvalidConfiguration):
            self.processor.preprocess(self.test_img)


class TestLayout(unittest.TestCase):

    def test_circle_distinct_positions(self):
        shape = CircleShape.around(100, 100)
        for n in range(3, 60):
            with self.subTest(n=n):
                layout = layout_anchors(n, shape)
                self.assertEqual(len(layout), n)
                self.assertEqual([a.id for a in layout.anchors], list(range(n)))
                self.assertEqual(len({(a.x, a.y) for a in layout.anchors}), n)

    def test_rectangle_distinct_positions(self):
        shape = RectangleShape().fit(100, 80)
        for n in range(3, 60):
            with self.subTest(n=n):
                layout = layout_anchors(n, shape)
                self.assertEqual(len(layout), n)
                self.assertEqual(len({(a.x, a.y) for a in layout.anchors}), n)

    def test_rectangle_corners(self):
        layout = layout_anchors(4, RectangleShape().fit(10, 10))
        self.assertEqual([(a.x, a.y) for a in layout.anchors], [(0, 0), (10, 0), (10, 10), (0, 10)])

    def test_circle_first_anchor_on_x_axis(self):
        layout = layout_anchors(4, CircleShape(center=(50.0, 50.0), radius=40.0))
        self.assertEqual([(a.x, a.y) for a in layout.anchors[:3]], [(90, 50), (50, 90), (10, 50)])
        self.assertEqual(layout.anchors[3].y, 10)

    def test_base_id(self):
        layout = layout_anchors(5, CircleShape.around(50, 50), base_id=1)
        self.assertEqual([a.id for a in layout.anchors], [1, 2, 3, 4, 5])
        self.assertEqual(layout.anchor(1), layout.anchors[0])
        with self.assertRaises(InternalInconsistency):
            layout.anchor(0)

    def test_dual_offset_layout(self):
        shape = CircleShape(center=(50.0, 50.0), radius=50.0)
        layout = layout_anchors(8, shape, peg_radius=5.0)
        self.assertEqual(len(layout), 16)
        self.assertEqual([a.id for a in layout.anchors], list(range(16)))
        # Колышек 0 под углом 0: края под -eps и +eps
        self.assertEqual((layout.anchors[0].x, layout.anchors[0].y), (99, 45))
        self.assertEqual((layout.anchors[1].x, layout.anchors[1].y), (99, 55))
        # Обход id против часовой стрелки: углы монотонно растут
        angles = [math.atan2(a.y - 50, a.x - 50) % (2 * math.pi) for a in layout.anchors[1:]]
        self.assertEqual(angles, sorted(angles))

    def test_dual_offset_pegs_must_not_overlap(self):
        shape = CircleShape(center=(50.0, 50.0), radius=50.0)
        with self.assertRaises(InvalidConfiguration):
            layout_anchors(6, shape, peg_radius=40.0)
        # Граница: eps = pi / N, соседние края совпадают
        with self.assertRaises(InvalidConfiguration):
            layout_anchors(6, shape, peg_radius=50.0 * math.sin(math.pi / 6) + 1e-9)
        layout = layout_anchors(6, shape, peg_radius=20.0)
        angles = [math.atan2(a.y - 50, a.x - 50) % (2 * math.pi) for a in layout.anchors[1:]]
        self.assertEqual(angles, sorted(angles))

    def test_layout_errors(self):
        with self.assertRaises(InvalidConfiguration):
            layout_anchors(2, CircleShape.around(50, 50))
        with self.assertRaises(InvalidConfiguration):
            layout_anchors(10, CircleShape.around(50, 50), peg_radius=30.0)
        with self.assertRaises(InvalidConfiguration):
            layout_anchors(10, RectangleShape().fit(50, 50), peg_radius=1.0)
        with self.assertRaises(InvalidConfiguration):
            layout_anchors(10, CircleShape())


class TestPathTable(unittest.TestCase):

    def setUp(self):
        self.config = small_config(NAILS=30, MIN_SEPARATION=3)
        self.table = build_table(self.config, 64, 48)

    def test_rasterize_line(self):
        for x0, y0, x1, y1 in ((0, 0, 9, 3), (5, 5, 1, 12), (3, 7, 3, 0), (0, 0, 6, 6), (4, 4, 4, 4)):
            with self.subTest(line=(x0, y0, x1, y1)):
                xs, ys = rasterize_line(x0, y0, x1, y1)
                self.assertEqual(len(xs), max(abs(x1 - x0), abs(y1 - y0)) + 1)
                points = set(zip(xs.tolist(), ys.tolist()))
                self.assertIn((x0, y0), points)
                self.assertIn((x1, y1), points)
                # 8-связность: соседние точки отличаются не больше чем на 1
                self.assertTrue(np.all(np.abs(np.diff(xs)) <= 1) and np.all(np.abs(np.diff(ys)) <= 1))

    def test_rasterize_matches_loop(self):
        """Закрытая форма совпадает с классическим циклом Брезенхэма."""
        def loop(x1, y1, x2, y2):
            steep = abs(y2 - y1) > abs(x2 - x1)
            if steep:
                x1, y1, x2, y2 = y1, x1, y2, x2
            if x1 > x2:
                x1, x2, y1, y2 = x2, x1, y2, y1
            dx, dy = x2 - x1, y2 - y1
            error, ystep, y, out = dx // 2, 1 if y1 < y2 else -1, y1, []
            for x in range(x1, x2 + 1):
                out.append((y, x) if steep else (x, y))
                error -= abs(dy)
                if error < 0:
                    y += ystep
                    error += dx
            return out

        rng = np.random.default_rng(3)
        for _ in range(200):
            x0, y0, x1, y1 = (int(v) for v in rng.integers(0, 40, size=4))
            xs, ys = rasterize_line(x0, y0, x1, y1)
            self.assertEqual(list(zip(xs.tolist(), ys.tolist())), loop(x0, y0, x1, y1))

    def test_separation_predicate(self):
        self.assertFalse(self.table.is_admissible(0, 3))
        self.assertTrue(self.table.is_admissible(0, 4))
        self.assertTrue(self.table.is_admissible(0, 26))
        self.assertFalse(self.table.is_admissible(0, 27))
        self.assertFalse(self.table.is_admissible(5, 5))

    def test_paths_are_reversible(self):
        """pixels(i, j) == reverse(pixels(j, i)) для всех допустимых пар."""
        for i in range(30):
            for j in self.table.candidates(i):
                j = int(j)
                forward = self.table.pixels(i, j)
                backward = self.table.pixels(j, i)
                np.testing.assert_array_equal(forward, backward[::-1])

    def test_paths_start_at_anchor_and_stay_in_bounds(self):
        layout = self.table.layout
        for i in (0, 7, 19):
            anchor = layout.anchor(i)
            for j in self.table.candidates(i):
                path = self.table.pixels(i, int(j))
                self.assertEqual(tuple(path[0]), (min(anchor.x, 63), min(anchor.y, 47)))
                self.assertTrue(np.all(path[:, 0] < 64) and np.all(path[:, 1] < 48))
                self.assertTrue(np.all(path >= 0))

    def test_candidates_sorted_and_admissible(self):
        for i in range(30):
            candidates = self.table.candidates(i)
            self.assertEqual(list(candidates), sorted(candidates))
            self.assertTrue(all(self.table.is_admissible(i, int(j)) for j in candidates))
            self.assertEqual(len(candidates), sum(self.table.is_admissible(i, j) for j in range(30)))

    def test_missing_pair_is_internal_inconsistency(self):
        with self.assertRaises(InternalInconsistency):
            self.table.flat_indices(0, 1)
        with self.assertRaises(InternalInconsistency):
            self.table.pixels(0, 99)

    def test_arena_is_read_only(self):
        path = self.table.flat_indices(0, 10)
        with self.assertRaises(ValueError):
            path[0] = 0

    def test_layout_change_detected(self):
        other = layout_anchors(31, self.config.resolve_shape(64, 48))
        self.assertFalse(self.table.matches(other, 64, 48))
        self.assertTrue(self.table.matches(self.table.layout, 64, 48))
        self.assertFalse(self.table.matches(self.table.layout, 65, 48))


class TestSequencer(unittest.TestCase):

    def setUp(self):
        self.config = small_config()
        self.field = np.random.default_rng(0).random((48, 48)) * 255
        self.table = build_table(self.config, 48, 48)
        self.sequencer = Sequencer(self.config)

    def test_rectangle_first_segment_is_darkest(self):
        """4 угла квадрата 10x10, поле = 10, ink = 5, одна итерация."""
        cfg = StringArtConfig(NAILS=4, SHAPE=RectangleShape(), MIN_SEPARATION=0,
                              INK_WEIGHT=5.0, ITERATIONS=1, SEED_NAIL=0)
        field = np.full((10, 10), 10.0)
        table = build_table(cfg, 10, 10)

        sums = {int(j): field[table.pixels(0, int(j))[:, 1], table.pixels(0, int(j))[:, 0]].sum()
                for j in table.candidates(0)}
        # Все три хорды из угла (0, 0) проходят по 10 пикселям
        self.assertEqual(sums, {1: 100.0, 2: 100.0, 3: 100.0})

        result = Sequencer(cfg).generate(field, table)
        self.assertEqual(result.sequence, (1,))
        path = table.pixels(0, 1)
        self.assertTrue(np.all(result.residual[path[:, 1], path[:, 0]] == 5.0))
        self.assertEqual(result.residual.sum(), 1000.0 - 50.0)

        # С MIN_SEPARATION = 1 остаётся только диагональ
        cfg.MIN_SEPARATION = 1
        table = build_table(cfg, 10, 10)
        self.assertEqual(Sequencer(cfg).generate(field, table).sequence, (2,))

    def test_darkest_path_wins(self):
        cfg = StringArtConfig(NAILS=4, SHAPE=RectangleShape(), MIN_SEPARATION=0,
                              INK_WEIGHT=5.0, ITERATIONS=1, SEED_NAIL=0)
        field = np.zeros((10, 10))
        field[9, :] = 50.0  # тёмная нижняя строка
        field[:, 0] = 50.0  # и левый столбец: хорда 0 -> 3 целиком по нему
        table = build_table(cfg, 10, 10)
        self.assertEqual(Sequencer(cfg).generate(field, table).sequence, (3,))

    def test_zero_field_stops_immediately(self):
        result = self.sequencer.generate(np.zeros((48, 48)), self.table)
        self.assertEqual(result.sequence, ())
        self.assertEqual(result.stop_reason, StopReason.EXHAUSTED)

    def test_determinism(self):
        first = self.sequencer.generate(self.field, self.table)
        second = self.sequencer.generate(self.field.copy(), self.table)
        self.assertEqual(first.sequence, second.sequence)
        np.testing.assert_array_equal(first.residual, second.residual)

    def test_bounds_and_no_repeats(self):
        result = self.sequencer.generate(self.field, self.table)
        self.assertLessEqual(len(result), self.config.ITERATIONS)
        anchors = (result.start,) + result.sequence
        self.assertTrue(all(a != b for a, b in zip(anchors[:-1], anchors[1:])))
        self.assertEqual(len(result.segments()), len(result))

    def test_residual_monotonic_and_non_negative(self):
        sums = []
        for budget in range(0, 12):
            self.config.ITERATIONS = budget
            result = self.sequencer.generate(self.field, self.table)
            self.assertTrue(np.all(result.residual >= 0))
            sums.append(result.residual.sum())
        self.assertTrue(all(b <= a + 1e-9 for a, b in zip(sums[:-1], sums[1:])))

    def test_pristine_not_mutated(self):
        original = self.field.copy()
        result = self.sequencer.generate(self.field, self.table)
        np.testing.assert_array_equal(self.field, original)
        np.testing.assert_array_equal(result.pristine, original)

    def test_time_saver_reproducible_with_seeded_rng(self):
        self.config.TIME_SAVER = 0.3
        first = self.sequencer.generate(self.field, self.table, rng=np.random.default_rng(7))
        second = self.sequencer.generate(self.field, self.table, rng=np.random.default_rng(7))
        self.assertEqual(first.sequence, second.sequence)
        self.assertGreater(len(first), 0)

    def test_sample_size_rounds_half_up(self):
        self.assertEqual(sample_size(5, 0.5), 3)
        self.assertEqual(sample_size(10, 0.25), 3)
        self.assertEqual(sample_size(10, 0.24), 2)
        self.assertEqual(sample_size(3, 0.1), 1)
        self.assertEqual(sample_size(26, 1.0), 26)

    def test_random_seed_nail(self):
        self.config.SEED_NAIL = None
        first = self.sequencer.generate(self.field, self.table, rng=np.random.default_rng(11))
        second = self.sequencer.generate(self.field, self.table, rng=np.random.default_rng(11))
        self.assertEqual(first.start, second.start)
        self.assertTrue(0 <= first.start < self.config.NAILS)

    def test_lightness_penalty_stops_without_gain(self):
        self.config.LIGHTNESS_PENALTY = 1.0
        self.config.INK_WEIGHT = 5.0
        result = self.sequencer.generate(np.ones((48, 48)), self.table)
        self.assertEqual(result.sequence, ())
        self.assertEqual(result.stop_reason, StopReason.NO_GAIN)

    def test_negative_mask_everywhere(self):
        mask = np.ones((48, 48), dtype=bool)
        result = self.sequencer.generate(self.field, self.table, negative_mask=mask)
        self.assertEqual(result.stop_reason, StopReason.NO_GAIN)
        self.assertEqual(len(result), 0)

    def test_score_paths(self):
        values = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
        offsets = np.array([0, 3])
        np.testing.assert_allclose(score_paths(values, offsets, 3.0), [6.0, 9.0])
        # Штраф: избыток max(0, 3 - v) = [2, 1, 0 | 0, 0]
        np.testing.assert_allclose(score_paths(values, offsets, 3.0, lightness_penalty=2.0), [0.0, 9.0])
        reward = np.array([True, False, False, False, True])
        np.testing.assert_allclose(score_paths(values, offsets, 3.0, reward=reward), [1.0, 5.0])
        forbidden = np.array([False, False, False, True, False])
        np.testing.assert_allclose(
            score_paths(values, offsets, 3.0, lightness_penalty=1.0, forbidden=forbidden), [3.0, 2.0]
        )

    def test_input_errors(self):
        with self.assertRaises(InvalidInput):
            self.sequencer.generate(None, self.table)
        with self.assertRaises(InvalidInput):
            self.sequencer.generate(np.zeros((10, 10)), self.table)
        with self.assertRaises(InvalidInput):
            self.sequencer.generate(self.field - 300, self.table)
        with self.assertRaises(InvalidInput):
            self.sequencer.generate(self.field, self.table, positive_mask=np.ones((5, 5), dtype=bool))

    def test_cancellation(self):
        cancel = threading.Event()
        cancel.set()
        with self.assertRaises(GenerationCancelled):
            self.sequencer.generate(self.field, self.table, cancel=cancel)

    def test_timeout_cancels_between_iterations(self):
        self.config.TIMEOUT = 0.05
        with self.assertRaises(GenerationCancelled) as ctx:
            self.sequencer.generate(self.field, self.table, on_step=lambda i, a, s: time.sleep(0.1))
        self.assertEqual(ctx.exception.iteration, 1)

    def test_on_step_callback(self):
        steps = []
        result = self.sequencer.generate(self.field, self.table, on_step=lambda i, a, s: steps.append((i, a)))
        self.assertEqual([a for _, a in steps], list(result.sequence))
        self.assertEqual([i for i, _ in steps], list(range(len(result))))


class TestGenerator(unittest.TestCase):

    def setUp(self):
        self.generator = StringArtGenerator(small_config(NAILS=36, MIN_SEPARATION=4, ITERATIONS=30))

        # Фейковое изображение: чёрный квадрат с белой линией
        self.test_img = np.zeros((80, 80, 3), dtype=np.uint8)
        cv2.line(self.test_img, (10, 10), (70, 70), (255, 255, 255), 2)

    def test_full_pipeline(self):
        result = self.generator.generate(self.test_img)
        self.assertGreater(len(result), 0, "На картинке есть контур, нить должна появиться")
        self.assertLessEqual(len(result), 30)
        self.assertEqual(result.pristine.shape, (80, 80))
        self.assertEqual(len(result.points(self.generator.layout)), len(result) + 1)

    def test_layout_change_rebuilds_table(self):
        first = self.generator.prepare(80, 80)
        self.assertIs(self.generator.prepare(80, 80), first)

        self.generator.configure(INK_WEIGHT=10.0)
        self.assertIs(self.generator.prepare(80, 80), first)

        self.generator.configure(NAILS=40)
        second = self.generator.prepare(80, 80)
        self.assertIsNot(second, first)
        self.assertEqual(second.total_anchors, 40)

        self.assertIsNot(self.generator.prepare(90, 80), second)

    def test_configure_unknown_parameter(self):
        with self.assertRaises(InvalidConfiguration):
            self.generator.configure(NOT_A_FIELD=1)

    def test_rejected_change_keeps_config(self):
        """Отвергнутое изменение не портит общий конфиг и кэш путей."""
        table = self.generator.prepare(80, 80)
        with self.assertRaises(InvalidConfiguration):
            self.generator.configure(NAILS=2, INK_WEIGHT=7.0)
        self.assertEqual(self.generator.cfg.NAILS, 36)
        self.assertEqual(self.generator.cfg.INK_WEIGHT, 20.0)
        self.assertIs(self.generator.sequencer.cfg, self.generator.cfg)
        self.assertIs(self.generator.prepare(80, 80), table)

    def test_invalid_image(self):
        with self.assertRaises(InvalidInput):
            self.generator.generate(None)


class TestConsoleApp(unittest.TestCase):

    def setUp(self):
        self.app = ConsoleApp()

    def test_seed_nail_random(self):
        args = self.app.parse_args(["input", "--seed-nail", "random"])
        self.assertIsNone(args.seed_nail)
        self.app.apply_args(args)
        self.assertIsNone(self.app.config.SEED_NAIL)

    def test_seed_nail_number(self):
        args = self.app.parse_args(["input", "--seed-nail", "5"])
        self.assertEqual(args.seed_nail, 5)
        self.assertEqual(self.app.parse_args(["input"]).seed_nail, 0)
        with self.assertRaises(argparse.ArgumentTypeError):
            seed_nail_arg("abc")

    def test_invalid_option_returns_error_code(self):
        self.assertEqual(self.app.run(["input", "--nails", "2"]), 2)
        self.assertEqual(self.app.config.NAILS, 200)


class TestExporter(unittest.TestCase):

    def test_process_and_save(self):
        cfg = small_config(NAILS=36, MIN_SEPARATION=4, ITERATIONS=10, PREPROCESS_MODE=PreprocessMode.GRAYSCALE)
        generator = StringArtGenerator(cfg)
        img = np.full((50, 50, 3), 255, dtype=np.uint8)
        cv2.circle(img, (25, 25), 10, (0, 0, 0), -1)
        result = generator.generate(img)

        with tempfile.TemporaryDirectory() as tmp:
            stem = str(Path(tmp) / "portrait")
            count = SequenceExporter(cfg).process_and_save(generator.layout, result, stem, img.shape[:2])
            self.assertEqual(count, len(result))

            lines = Path(stem + ".txt").read_text(encoding="utf-8").split()
            self.assertEqual(lines, [str(a) for a in (result.start,) + result.sequence])
            self.assertIn("<path", Path(stem + ".svg").read_text(encoding="utf-8"))
            residual = cv2.imread(stem + "_residual.png", cv2.IMREAD_GRAYSCALE)
            self.assertEqual(residual.shape, (50, 50))


if __name__ == '__main__':
    unittest.main()
