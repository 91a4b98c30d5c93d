"""
cli.py
Обработка аргументов командной строки и UI.
"""
import time
import argparse
from pathlib import Path
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, BarColumn, TextColumn
from rich.table import Table
from rich.panel import Panel
from rich import box

from config import PreprocessMode, StringArtConfig
from exporter import SequenceExporter
from generator import StringArtGenerator
from layout import CircleShape, RectangleShape

console = Console()

SHAPES = {"circle": CircleShape, "rectangle": RectangleShape}
RANDOM_SEED_NAIL = "random"


def seed_nail_arg(value):
    """Номер стартового гвоздя или "random" (берётся из --random-seed)."""
    if value.lower() == RANDOM_SEED_NAIL:
        return None
    try:
        return int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"ожидается целое число или '{RANDOM_SEED_NAIL}', получено {value!r}"
        ) from None


class ConsoleApp:
    def __init__(self):
        self.config = StringArtConfig()
        self.generator = StringArtGenerator(self.config)
        self.exporter = SequenceExporter(self.config)

    def parse_args(self, argv=None):
        parser = argparse.ArgumentParser(description="String Art Generator")
        parser.add_argument("input_dir", type=str, help="Папка с картинками")
        parser.add_argument("--out", type=str, default="output", help="Папка для сохранения")
        parser.add_argument("--nails", type=int, default=self.config.NAILS, help="Количество гвоздей")
        parser.add_argument("--shape", choices=sorted(SHAPES), default="circle", help="Форма рамы")
        parser.add_argument("--peg-radius", type=float, default=None, help="Радиус колышка, px")
        parser.add_argument("--iterations", type=int, default=self.config.ITERATIONS, help="Бюджет отрезков")
        parser.add_argument("--weight", type=float, default=self.config.INK_WEIGHT, help="Чернила за проход")
        parser.add_argument("--seed-nail", type=seed_nail_arg, default=self.config.SEED_NAIL,
                            help="Стартовый гвоздь (id) или 'random'")
        parser.add_argument("--random-seed", type=int, default=self.config.RANDOM_SEED)
        parser.add_argument("--min-separation", type=int, default=self.config.MIN_SEPARATION)
        parser.add_argument("--time-saver", type=float, default=self.config.TIME_SAVER)
        parser.add_argument("--lightness-penalty", type=float, default=self.config.LIGHTNESS_PENALTY)
        parser.add_argument("--mode", choices=[m.value for m in PreprocessMode], default=self.config.PREPROCESS_MODE.value)
        parser.add_argument("--sigma", type=float, default=self.config.SIGMA)
        parser.add_argument("--low", type=float, default=self.config.LOW_THRESHOLD, help="Нижний порог Canny")
        parser.add_argument("--high", type=float, default=self.config.HIGH_THRESHOLD, help="Верхний порог Canny")
        parser.add_argument("--positive-mask", type=str, default=None, help="Маска: где учитывать темноту")
        parser.add_argument("--negative-mask", type=str, default=None, help="Маска: где нить нежелательна")
        return parser.parse_args(argv)

    def apply_args(self, args):
        self.generator.configure(
            NAILS=args.nails,
            SHAPE=SHAPES[args.shape](),
            PEG_RADIUS=args.peg_radius,
            ITERATIONS=args.iterations,
            INK_WEIGHT=args.weight,
            SEED_NAIL=args.seed_nail,
            RANDOM_SEED=args.random_seed,
            MIN_SEPARATION=args.min_separation,
            TIME_SAVER=args.time_saver,
            LIGHTNESS_PENALTY=args.lightness_penalty,
            PREPROCESS_MODE=PreprocessMode(args.mode),
            SIGMA=args.sigma,
            LOW_THRESHOLD=args.low,
            HIGH_THRESHOLD=args.high,
        )

    def run(self, argv=None):
        args = self.parse_args(argv)
        try:
            self.apply_args(args)
        except ValueError as e:
            console.print(f"[bold red]Ошибка конфигурации:[/bold red] {e}")
            return 2

        input_path = Path(args.input_dir)
        output_path = Path(args.out)
        output_path.mkdir(exist_ok=True)

        # Поддержка разных форматов
        extensions = ["*.jpg", "*.jpeg", "*.png", "*.bmp"]
        files = []
        for ext in extensions:
            files.extend(input_path.glob(ext.lower()))
            files.extend(input_path.glob(ext.upper()))

        # Удаляем дубликаты
        files = sorted(list(set(files)))

        if not files:
            console.print("[bold red]Ошибка:[/bold red] Файлы не найдены.")
            return 1

        console.print(Panel.fit(
            f"Файлов: [bold cyan]{len(files)}[/bold cyan]\n"
            f"Гвоздей: [bold cyan]{self.config.total_anchors}[/bold cyan] ({args.shape})\n"
            f"Метод: [bold green]{self.config.PREPROCESS_MODE.value} -> Greedy Fitness[/bold green]",
            title="🧵 String Art", border_style="blue"
        ))

        positive = self.generator.img_proc.load_mask(args.positive_mask) if args.positive_mask else None
        negative = self.generator.img_proc.load_mask(args.negative_mask) if args.negative_mask else None

        results = []

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
        ) as progress:
            for file in files:
                start_time = time.time()
                status = "OK"
                lines_count = 0
                task = progress.add_task(f"[cyan]{file.name}", total=self.config.ITERATIONS)

                try:
                    # 1. Загрузка
                    raw_img = self.generator.img_proc.load_image(str(file))

                    # 2. Генерация (препроцессинг, раскладка, пути, жадный цикл)
                    result = self.generator.generate(
                        raw_img,
                        positive_mask=positive,
                        negative_mask=negative,
                        on_step=lambda i, anchor, score: progress.advance(task),
                    )

                    # 3. Сохранение
                    out_stem = str(output_path / (file.stem + self.config.OUTPUT_SUFFIX))
                    lines_count = self.exporter.process_and_save(
                        self.generator.layout, result, out_stem, raw_img.shape[:2]
                    )
                    status = f"OK ({result.stop_reason.value})"

                except Exception as e:
                    status = f"ERROR: {str(e)}"
                    console.print(f"\n[red]Сбой на {file.name}: {e}[/red]")

                progress.update(task, completed=self.config.ITERATIONS)
                elapsed = time.time() - start_time
                results.append((file.name, f"{elapsed:.2f}s", str(lines_count), status))

        self.print_summary(results)
        return 0

    def print_summary(self, data):
        table = Table(title="Результаты", box=box.ROUNDED)
        table.add_column("Файл", style="cyan")
        table.add_column("Время", justify="right")
        table.add_column("Отрезков", justify="right")
        table.add_column("Статус", justify="center")

        for row in data:
            status_style = "green" if row[3].startswith("OK") else "red"
            short_status = row[3] if len(row[3]) < 20 else "ERROR"
            table.add_row(row[0], row[1], row[2], f"[{status_style}]{short_status}[/{status_style}]")

        console.print(table)


def main(argv=None):
    return ConsoleApp().run(argv)


if __name__ == "__main__":
    raise SystemExit(main())
