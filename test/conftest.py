import sys
from datetime import datetime, timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class FixedClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: datetime = datetime(2024, 3, 10, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set(self, when: datetime) -> None:
        self.now = when

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


def make_container(tmp_path: Path, clock: FixedClock | None = None, name: str = "ledger.db"):
    from bookkeeper.application.container import build_container

    clock = clock or FixedClock()
    return build_container(tmp_path / name, clock=clock), clock
