import pytest

from fluency.storage import Storage


@pytest.fixture
def storage(tmp_path):
    return Storage(db_path=tmp_path / "fluency.db")
