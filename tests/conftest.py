import pytest

from db.db import Database
from utils.download import TempDownload
from utils.hashing import bytes_digest


@pytest.fixture
async def db(tmp_path):
    database = Database(f"sqlite://{tmp_path / 'archive.db'}")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def make_temp(tmp_path):
    """Write `data` as a finished download inside `base_dir`, the way download_to_temp leaves it."""
    counter = iter(range(1_000_000))

    def _make(data: bytes, base_dir=tmp_path) -> TempDownload:
        path = base_dir / f".{next(counter)}.part"
        path.write_bytes(data)
        return TempDownload(path=path, size=len(data), digest=bytes_digest(data))

    return _make
