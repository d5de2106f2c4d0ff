import shutil

import pytest

from fruit_price.core import language_data as language_data_module
from fruit_price.core.errors import OcrResourceError
from fruit_price.core.language_data import LanguageDataStore
from fruit_price.core.types import LifecycleState


@pytest.fixture
def asset_dir(tmp_path):
    assets = tmp_path / 'assets'
    assets.mkdir()
    (assets / 'slv.traineddata').write_bytes(b'trained-language-bytes')
    return assets


def test_first_ensure_creates_directory_and_file(tmp_path, asset_dir):
    data_root = tmp_path / 'files' / 'tesseract'
    store = LanguageDataStore(data_root, 'slv', asset_dir)
    assert not data_root.exists()

    tessdata = store.ensure()

    assert tessdata == data_root / 'tessdata'
    assert (tessdata / 'slv.traineddata').read_bytes() == b'trained-language-bytes'
    assert store.state == LifecycleState.READY


def test_second_ensure_performs_no_write(tmp_path, asset_dir, monkeypatch):
    copies = []
    real_copyfile = shutil.copyfile

    def counting_copyfile(src, dst, *args, **kwargs):
        copies.append(dst)
        return real_copyfile(src, dst, *args, **kwargs)

    monkeypatch.setattr(language_data_module.shutil, 'copyfile', counting_copyfile)
    store = LanguageDataStore(tmp_path / 'tesseract', 'slv', asset_dir)

    store.ensure()
    target = store.target_path
    first_mtime = target.stat().st_mtime_ns
    store.ensure()

    assert len(copies) == 1
    assert target.stat().st_mtime_ns == first_mtime
    assert [p.name for p in store.tessdata_dir.iterdir()] == ['slv.traineddata']


def test_existing_file_is_not_overwritten(tmp_path, asset_dir):
    tessdata = tmp_path / 'tesseract' / 'tessdata'
    tessdata.mkdir(parents=True)
    (tessdata / 'slv.traineddata').write_bytes(b'already-here')
    store = LanguageDataStore(tmp_path / 'tesseract', 'slv', asset_dir)

    store.ensure()

    assert (tessdata / 'slv.traineddata').read_bytes() == b'already-here'


def test_missing_asset_raises_and_leaves_no_directory(tmp_path):
    store = LanguageDataStore(tmp_path / 'tesseract', 'slv', tmp_path / 'no-assets')

    with pytest.raises(OcrResourceError) as excinfo:
        store.ensure()

    assert excinfo.value.code == 'OCR_RESOURCE_MISSING'
    assert store.state == LifecycleState.FAILED
    assert not (tmp_path / 'tesseract').exists()


def test_failed_store_recovers_once_asset_appears(tmp_path):
    assets = tmp_path / 'assets'
    store = LanguageDataStore(tmp_path / 'tesseract', 'slv', assets)
    with pytest.raises(OcrResourceError):
        store.ensure()

    assets.mkdir()
    (assets / 'slv.traineddata').write_bytes(b'late')
    store.ensure()

    assert store.state == LifecycleState.READY
    assert store.message is None
    assert store.target_path.read_bytes() == b'late'


def test_interrupted_copy_leaves_no_truncated_file(tmp_path, monkeypatch):
    assets = tmp_path / 'assets'
    assets.mkdir()
    (assets / 'slv.traineddata').write_bytes(b'x' * 1000)
    real_copyfile = shutil.copyfile

    def disk_full_copyfile(src, dst, *args, **kwargs):
        with open(dst, 'wb') as handle:
            handle.write(b'x' * 10)
        raise OSError(28, 'No space left on device')

    monkeypatch.setattr(language_data_module.shutil, 'copyfile', disk_full_copyfile)
    store = LanguageDataStore(tmp_path / 'tesseract', 'slv', assets)

    with pytest.raises(OcrResourceError):
        store.ensure()
    assert store.state == LifecycleState.FAILED
    assert not store.target_path.exists()
    assert list(store.tessdata_dir.iterdir()) == []

    monkeypatch.setattr(language_data_module.shutil, 'copyfile', real_copyfile)
    store.ensure()

    assert store.state == LifecycleState.READY
    assert store.target_path.stat().st_size == 1000
