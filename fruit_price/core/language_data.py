import logging
import os
import shutil
import threading
from pathlib import Path

from fruit_price.core.errors import OcrResourceError
from fruit_price.core.types import LifecycleState

logger = logging.getLogger('fruit_price.language_data')

TESSDATA_DIRNAME = 'tessdata'
PARTIAL_SUFFIX = '.part'


class LanguageDataStore:
    """Provision `<language>.traineddata` under `<data_root>/tessdata`.

    The file is copied from the bundled asset directory the first time it is
    missing. Later calls only check for it, so repeated `ensure()` calls never
    write to disk. The copy lands under a temporary name and is renamed into
    place, so an interrupted copy never leaves a truncated file behind and a
    failed provisioning may be retried.
    """

    def __init__(self, data_root: str | Path, language: str = 'slv', asset_dir: str | Path = 'assets'):
        self._data_root = Path(data_root)
        self._language = language
        self._asset_dir = Path(asset_dir)
        self._state = LifecycleState.UNINITIALIZED
        self._message: str | None = None
        self._lock = threading.Lock()

    @property
    def language(self) -> str:
        return self._language

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def message(self) -> str | None:
        return self._message

    @property
    def data_root(self) -> Path:
        return self._data_root

    @property
    def tessdata_dir(self) -> Path:
        return self._data_root / TESSDATA_DIRNAME

    @property
    def target_path(self) -> Path:
        return self.tessdata_dir / f'{self._language}.traineddata'

    @property
    def asset_path(self) -> Path:
        return self._asset_dir / f'{self._language}.traineddata'

    def ensure(self) -> Path:
        with self._lock:
            target = self.target_path
            if target.is_file():
                self._state = LifecycleState.READY
                self._message = None
                return self.tessdata_dir

            source = self.asset_path
            if not source.is_file():
                self._state = LifecycleState.FAILED
                self._message = f'language data not found: {source.as_posix()}'
                raise OcrResourceError(self._message, details={'language': self._language})

            partial = target.with_name(target.name + PARTIAL_SUFFIX)
            try:
                self.tessdata_dir.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source, partial)
                os.replace(partial, target)
            except OSError as exc:
                partial.unlink(missing_ok=True)
                self._state = LifecycleState.FAILED
                self._message = f'could not copy language data to {target.as_posix()}: {exc}'
                raise OcrResourceError(self._message, details={'language': self._language}) from exc

            self._state = LifecycleState.READY
            self._message = None
            logger.info('Language data provisioned language=%s path=%s', self._language, target.as_posix())
            return self.tessdata_dir
